"""Assistant session controller.

Orchestrates one voice-assistant session: microphone permission, the
capture strategy (live recognition, or the fixed-window fallback), voice
commands, the conversation with the inference service, and speech output.

All state changes happen on the event loop. The UI layer observes the
session through ``on_change(snapshot)`` and drives it through the public
operations below.
"""

import asyncio
import logging
from collections.abc import Callable

from audio.permission import PermissionGate
from audio.state import AssistantPhase, CaptureState, PermissionState, SessionSnapshot, SessionState
from capture.base import CaptureCallbacks, CaptureSession
from capture.fallback import AudioRecorder, FallbackCaptureSession
from capture.primary import PrimaryCaptureSession, RecognitionEngine
from providers.inference import InferenceClient, InferenceReply
from settings import DEFAULT_VOICE_SETTINGS
from shared.errors import CaptureError, InferenceError
from shared.tasks import SessionTasks

from .commands import SEND_DEBOUNCE_SECONDS, VoiceCommand, interpret
from .conversation import HEALTH_TIPS_TEXT, ConversationManager, Message, Severity, SuggestedAction, welcome_text

logger = logging.getLogger(__name__)

# Consecutive primary failures of these kinds switch the session to the fallback recorder
PRIMARY_FAILURE_LIMIT = 2
ESCALATING_CAPTURE_ERRORS = frozenset((
    CaptureError.UNKNOWN,
    CaptureError.ABORTED,
    CaptureError.DEVICE_UNAVAILABLE,
))

LOGIN_REDIRECT_DELAY = 3.0
FEEDBACK_CLEAR_DELAY = 1.5
STATUS_CLEAR_DELAY = 3.0
LONG_STATUS_CLEAR_DELAY = 5.0

LOGIN_REQUIRED_TEXT = (
    "Please log in to use the AI Health Assistant. "
    "You will be redirected to the login page shortly."
)
NOT_LOGGED_IN_TEXT = "You need to be logged in to use the AI assistant. Please log in and try again."
SESSION_EXPIRED_TEXT = (
    "Your session has expired. Please refresh the page or log in again "
    "to continue using the AI assistant."
)
SERVER_ERROR_TEXT = (
    "The server encountered an error. Our team has been notified and is working to fix the issue."
)
NETWORK_ERROR_TEXT = (
    "I apologize, but I'm having trouble connecting to my knowledge base right now. "
    "Please try again in a moment or contact support if the issue persists."
)
QUOTA_EXCEEDED_TEXT = (
    "I apologize, but I'm experiencing high demand right now. Please try again in {retry_after}."
)

MIC_DENIED_TEXT = "Microphone access denied. Please enable it in your system settings."
MIC_UNAVAILABLE_TEXT = "Microphone access is required for voice input. Please allow access and try again."

CAPTURE_STATUS_TEXTS = {
    CaptureError.PERMISSION_DENIED: MIC_DENIED_TEXT,
    CaptureError.NO_SPEECH: "No speech detected. Please try again.",
    CaptureError.DEVICE_UNAVAILABLE: "No microphone detected.",
    CaptureError.ABORTED: "Voice recording was aborted.",
    CaptureError.UNSUPPORTED: "Speech recognition is not supported on this device.",
    CaptureError.TRANSCRIPTION_UNAVAILABLE: (
        "Your voice was recorded, but speech transcription is not available. "
        "Please type your message instead."
    ),
    CaptureError.UNKNOWN: "Error recognizing speech. Please try again.",
}

# None: persists until permission changes
CAPTURE_STATUS_DELAYS = {
    CaptureError.PERMISSION_DENIED: None,
    CaptureError.UNSUPPORTED: LONG_STATUS_CLEAR_DELAY,
    CaptureError.TRANSCRIPTION_UNAVAILABLE: LONG_STATUS_CLEAR_DELAY,
}

ChangeListener = Callable[[SessionSnapshot], None]


class AssistantSessionController:
    """
    One assistant session.

    Collaborators are injected so the state machine runs against fake
    adapters in tests:

        gate: PermissionGate over the platform microphone adapter
        inference: InferenceClient (anything with ``has_token`` / ``send_message``)
        engine_factory: returns a fresh RecognitionEngine per primary capture
        recorder_factory: returns a fresh AudioRecorder per fallback capture
        player: SpeechOutputPlayer, or None for text-only sessions
        transcriber: STTAdapter used by the fallback recorder, or None
        on_settings_change: receives the voice settings after a user changes them
    """

    def __init__(
        self,
        gate: PermissionGate,
        inference: InferenceClient,
        engine_factory: Callable[[], RecognitionEngine],
        recorder_factory: Callable[[], AudioRecorder],
        player=None,
        conversation: ConversationManager | None = None,
        transcriber=None,
        settings: dict | None = None,
        user_name: str | None = None,
        on_change: ChangeListener | None = None,
        on_redirect_login: Callable[[], None] | None = None,
        on_book_appointment: Callable[[Message], None] | None = None,
        on_settings_change: Callable[[dict], None] | None = None,
    ):
        self._gate = gate
        self._inference = inference
        self._engine_factory = engine_factory
        self._recorder_factory = recorder_factory
        self._player = player
        self.conversation = conversation or ConversationManager()
        self._transcriber = transcriber
        self.settings = {**DEFAULT_VOICE_SETTINGS, **(settings or {})}
        self.user_name = user_name

        self._on_change = on_change
        self._on_redirect_login = on_redirect_login
        self._on_book_appointment = on_book_appointment
        self._on_settings_change = on_settings_change

        self.state = SessionState(
            permission=gate.state,
            voice_output_enabled=bool(self.settings["voice_output_enabled"]),
            using_fallback=bool(self.settings["use_fallback"]),
        )

        self._tasks = SessionTasks()
        self._capture: CaptureSession | None = None
        self._requesting_permission = False
        self._primary_failures = 0
        self._request_seq = 0
        self._inflight: asyncio.Task | None = None
        self._closed = False

        self._unsubscribers = [gate.subscribe(self._on_permission_change)]
        if player is not None:
            if self.state.voice_output_enabled:
                player.enable()
            else:
                player.disable()
            self._unsubscribers.append(player.subscribe(self._on_speaking_change))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def capture(self) -> CaptureSession | None:
        """The active capture session, if any."""
        return self._capture

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(state=self.state.to_dict(), messages=self.conversation.messages)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Mount the session: greet (or ask for login) and check the microphone once."""
        if not self._inference.has_token():
            logger.info("No auth token, asking the user to log in")
            self.conversation.append_notice(LOGIN_REQUIRED_TEXT, Severity.WARNING)
            self._schedule_login_redirect()
            self._notify()
            return

        self.conversation.reset(welcome_text(self.user_name))
        self._notify()

        await self._gate.check_permission()
        if self._closed:
            return
        self._gate.start_watching()
        logger.info("Assistant session started (permission: %s)", self._gate.state)

    def close(self) -> None:
        """Tear down: release the microphone, silence speech, drop the in-flight request."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing assistant session")

        capture, self._capture = self._capture, None
        if capture is not None:
            capture.abort()
        if self._player is not None:
            self._player.cancel()
        self._cancel_inflight()
        self._gate.stop_watching()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self._tasks.close()

    # ------------------------------------------------------------------
    # Voice input
    # ------------------------------------------------------------------

    async def start_voice_input(self) -> None:
        """
        Begin one capture attempt.

        Raises:
            CaptureError(busy): a capture is active or permission is being requested
        """
        if self._closed:
            return
        if self._capture is not None or self._requesting_permission:
            raise CaptureError(CaptureError.BUSY, "Voice input already in progress")

        # Don't record our own voice
        if self._player is not None:
            self._player.cancel()
        self._set_status(None)

        if not self._gate.is_granted:
            if self.state.using_fallback:
                # The recorder asks for the microphone itself; opening it grants permission
                logger.info("Permission %s, alternative recorder will request the microphone", self._gate.state)
            else:
                granted = await self._request_permission()
                if not granted or self._closed:
                    return

        await self._start_capture(fallback=self.state.using_fallback)

    def stop_voice_input(self) -> None:
        """Finish the current capture with whatever was heard so far."""
        capture = self._capture
        if capture is None:
            return
        logger.info("Voice input stop requested")
        if capture.kind == FallbackCaptureSession.kind:
            self.state.listening_text = "Processing audio..."
        else:
            self.state.listening_text = "Processing..."
        self._notify()
        capture.stop()

    async def use_alternative_capture(self) -> None:
        """
        Remediation escape hatch: use the fixed-window recorder from now on
        and start recording right away, bypassing the permission probe.
        """
        logger.info("Switching to alternative voice input")
        self.state.using_fallback = True
        self.state.show_permission_dialog = False
        self.settings["use_fallback"] = True
        self._save_settings()
        self._notify()
        if self._closed or self._capture is not None or self._requesting_permission:
            return
        await self.start_voice_input()

    def dismiss_permission_dialog(self) -> None:
        self.state.show_permission_dialog = False
        self._notify()

    async def retry_permission(self) -> str:
        """Re-run the permission check from the remediation dialog."""
        self.state.show_permission_dialog = False
        self._set_status(None)
        self._notify()
        granted = await self._request_permission()
        return PermissionState.GRANTED if granted else self._gate.state

    async def _request_permission(self) -> bool:
        self._requesting_permission = True
        self.state.phase = AssistantPhase.REQUESTING_PERMISSION
        self.state.capture = CaptureState.AWAITING_PERMISSION
        self._notify()
        try:
            result = await self._gate.check_permission()
        finally:
            self._requesting_permission = False
            if self.state.phase == AssistantPhase.REQUESTING_PERMISSION:
                self.state.phase = AssistantPhase.IDLE
            if self.state.capture == CaptureState.AWAITING_PERMISSION:
                self.state.capture = CaptureState.IDLE

        if result != PermissionState.GRANTED:
            logger.info("Microphone permission not granted (%s), opening remediation", result)
            self._open_remediation()
            self._notify()
            return False
        self._notify()
        return True

    async def _start_capture(self, fallback: bool) -> None:
        if fallback:
            session = FallbackCaptureSession(
                self._recorder_factory(),
                transcriber=self._transcriber,
                window_seconds=float(self.settings["fallback_window"]),
            )
            self.state.listening_text = "Starting alternative voice input method..."
        else:
            session = PrimaryCaptureSession(self._engine_factory())
            self.state.listening_text = "Starting voice recognition..."
        session.callbacks = self._capture_callbacks(session)

        self._capture = session
        self.state.phase = AssistantPhase.LISTENING
        self._notify()

        try:
            await session.start()
        except CaptureError as e:
            if self._capture is session:
                self._capture = None
            if e.code == CaptureError.UNSUPPORTED and not fallback and not self._closed:
                logger.info("Live recognition unsupported, using alternative voice input for this session")
                self.state.using_fallback = True
                await self._start_capture(fallback=True)
                return
            self._handle_capture_error(session, e)
            self._on_capture_finished(session)

    def _capture_callbacks(self, session: CaptureSession) -> CaptureCallbacks:
        def current() -> bool:
            return session is self._capture and not self._closed

        def on_listening(_session):
            if current():
                self._on_capture_listening(session)

        def on_interim(text):
            if current():
                self.state.listening_text = text or "Listening..."
                self._notify()

        def on_final(text):
            if current():
                self._on_capture_final(session, text)

        def on_error(error):
            if current():
                self._handle_capture_error(session, error)

        def on_finished(_session):
            if current():
                self._on_capture_finished(session)

        return CaptureCallbacks(
            on_listening=on_listening,
            on_interim=on_interim,
            on_final=on_final,
            on_error=on_error,
            on_finished=on_finished,
        )

    def _on_capture_listening(self, session: CaptureSession) -> None:
        if not self._gate.is_granted and session.kind == FallbackCaptureSession.kind:
            logger.info("Alternative recorder acquired the microphone")
            self._gate.mark_granted()
        if not self._gate.is_granted:
            # Capture must never run without permission
            logger.warning("Capture went live without microphone permission, aborting")
            session.abort()
            self._on_capture_finished(session)
            return
        if session.kind == FallbackCaptureSession.kind:
            self.state.capture = CaptureState.FALLBACK_LISTENING
            self.state.listening_text = "Listening (alternative method)..."
        else:
            self.state.capture = CaptureState.LISTENING
            self.state.listening_text = "Listening..."
        self._notify()

    def _on_capture_final(self, session: CaptureSession, transcript: str) -> None:
        if session.kind == PrimaryCaptureSession.kind:
            self._primary_failures = 0
        self.state.capture = CaptureState.PROCESSING_FINAL
        self.state.listening_text = f'Processing: "{transcript}"'
        self._notify()
        self._handle_transcript(transcript)

    def _handle_capture_error(self, session: CaptureSession, error: CaptureError) -> None:
        self.state.capture = CaptureState.ERROR
        self.state.listening_text = ""

        if error.code == CaptureError.PERMISSION_DENIED:
            self._gate.mark_denied()
            self._open_remediation()
        else:
            text = CAPTURE_STATUS_TEXTS.get(error.code, CAPTURE_STATUS_TEXTS[CaptureError.UNKNOWN])
            self._set_status(text, CAPTURE_STATUS_DELAYS.get(error.code, STATUS_CLEAR_DELAY))

        if session.kind == PrimaryCaptureSession.kind and error.code in ESCALATING_CAPTURE_ERRORS:
            self._primary_failures += 1
            if self._primary_failures >= PRIMARY_FAILURE_LIMIT and not self.state.using_fallback:
                logger.info("Live recognition failed %d times in a row, using alternative voice input",
                            self._primary_failures)
                self.state.using_fallback = True
        self._notify()

    def _on_capture_finished(self, session: CaptureSession) -> None:
        if self._capture is session:
            self._capture = None
        self.state.capture = CaptureState.IDLE
        if self.state.phase == AssistantPhase.LISTENING:
            self.state.phase = AssistantPhase.IDLE
        if not (self._tasks.pending("feedback") or self._tasks.pending("send-debounce")):
            self.state.listening_text = ""
        self._notify()

    def _handle_transcript(self, transcript: str) -> None:
        command = interpret(transcript)
        logger.info("Final transcript -> %s", command)
        if command == VoiceCommand.CLEAR_CHAT:
            self.clear_chat()
            self._show_feedback("Chat cleared!")
        elif command == VoiceCommand.SHOW_TIPS:
            self.show_tips()
            self._show_feedback("Showing health tips!")
        elif command == VoiceCommand.TOGGLE_VOICE:
            enabled = self.toggle_voice_output()
            self._show_feedback(f"Voice response {'enabled' if enabled else 'disabled'}!")
        else:
            # Let the UI show the transcript before it is sent
            self._tasks.call_later(
                SEND_DEBOUNCE_SECONDS,
                lambda: self.send_message(transcript),
                key="send-debounce",
            )

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def send_message(self, text: str) -> Message | None:
        """
        Send a user message to the inference service.

        Returns the assistant message appended for this request, or None
        when the text was blank or the reply was superseded.
        """
        text = (text or "").strip()
        if not text or self._closed:
            return None

        # History sent with the request excludes the new message
        history = self.conversation.context_window(int(self.settings["context_window"]))
        self.conversation.append_user(text)

        self._cancel_inflight()
        self._request_seq += 1
        seq = self._request_seq

        self.state.typing = True
        self.state.phase = AssistantPhase.SENDING
        self.state.listening_text = ""
        self._notify()

        task = asyncio.ensure_future(self._inference.send_message(text, history))
        self._inflight = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if seq != self._request_seq or self._closed:
            logger.info("Dropping stale inference response for request %d", seq)
            return None
        self._inflight = None
        self.state.typing = False
        if self.state.phase == AssistantPhase.SENDING:
            self.state.phase = AssistantPhase.IDLE

        if task.cancelled():
            self._notify()
            return None

        error = task.exception()
        if error is None:
            message = self._apply_reply(task.result())
        else:
            if not isinstance(error, InferenceError):
                logger.error("Unexpected inference failure: %s", error, exc_info=error)
                error = InferenceError(InferenceError.NETWORK, str(error))
            message = self._apply_failure(error)
        self._notify()
        return message

    def _apply_reply(self, reply: InferenceReply) -> Message:
        if reply.conversation_reset:
            logger.info("Inference service reset the conversation")
            self.conversation.reset(welcome_text(self.user_name))
        message = self.conversation.append_assistant(reply.text, reply)
        self.state.quota_exceeded = False
        self.state.retry_after = None
        if self.state.voice_output_enabled and self._player is not None:
            self._player.speak(message.text)
        return message

    def _apply_failure(self, error: InferenceError) -> Message:
        logger.warning("Inference request failed: %s (%s)", error.kind, error)
        if error.kind == InferenceError.UNAUTHENTICATED:
            text = SESSION_EXPIRED_TEXT if self._inference.has_token() else NOT_LOGGED_IN_TEXT
            self._schedule_login_redirect()
            return self.conversation.append_notice(text, Severity.WARNING)
        if error.kind == InferenceError.RATE_LIMITED:
            retry_after = error.retry_after or "30s"
            self.state.quota_exceeded = True
            self.state.retry_after = retry_after
            return self.conversation.append_notice(
                QUOTA_EXCEEDED_TEXT.format(retry_after=retry_after), Severity.INFO
            )
        if error.kind == InferenceError.SERVER_ERROR:
            return self.conversation.append_notice(SERVER_ERROR_TEXT, Severity.WARNING)
        return self.conversation.append_notice(NETWORK_ERROR_TEXT, Severity.WARNING)

    def _cancel_inflight(self) -> None:
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            logger.info("Cancelling in-flight inference request %d", self._request_seq)
            task.cancel()
        # Completions of anything issued so far are now stale
        self._request_seq += 1

    def clear_chat(self) -> None:
        """Reset the history to the welcome message. Never contacts the inference service."""
        self._cancel_inflight()
        self._tasks.cancel("send-debounce")
        if self._player is not None:
            self._player.cancel()
        self.conversation.reset(welcome_text(self.user_name))
        self.state.typing = False
        if self.state.phase == AssistantPhase.SENDING:
            self.state.phase = AssistantPhase.IDLE
        self.state.quota_exceeded = False
        self.state.retry_after = None
        self._notify()

    def show_tips(self) -> Message:
        message = self.conversation.append_notice(HEALTH_TIPS_TEXT, Severity.INFO)
        self._notify()
        return message

    def book_appointment(self, message_id: int) -> bool:
        """Hand an appointment suggestion to the host. Returns False if the message has none."""
        message = self.conversation.get(message_id)
        if message is None or message.suggested_action != SuggestedAction.APPOINTMENT:
            logger.warning("Message %s has no appointment suggestion", message_id)
            return False
        if self._on_book_appointment is not None:
            try:
                self._on_book_appointment(message)
            except Exception as e:
                logger.error("Book appointment callback failed: %s", e)
                return False
        return True

    # ------------------------------------------------------------------
    # Speech output
    # ------------------------------------------------------------------

    def toggle_voice_output(self) -> bool:
        """Flip spoken replies on or off. Turning off silences the current utterance at once."""
        enabled = not self.state.voice_output_enabled
        self.state.voice_output_enabled = enabled
        self.settings["voice_output_enabled"] = enabled
        self._save_settings()
        if self._player is not None:
            if enabled:
                self._player.enable()
            else:
                self._player.disable()
        if not enabled:
            self.state.is_speaking = False
        logger.info("Voice output %s", "enabled" if enabled else "disabled")
        self._notify()
        return enabled

    def _on_speaking_change(self, speaking: bool) -> None:
        self.state.is_speaking = speaking
        self._notify()

    # ------------------------------------------------------------------
    # Permission
    # ------------------------------------------------------------------

    def _on_permission_change(self, old: str, new: str) -> None:
        self.state.permission = new
        if new == PermissionState.GRANTED:
            self.state.show_permission_dialog = False
            if self.state.status_text in (MIC_DENIED_TEXT, MIC_UNAVAILABLE_TEXT):
                self._set_status(None)
        elif new == PermissionState.DENIED:
            self._open_remediation()
            capture = self._capture
            if capture is not None:
                logger.info("Microphone permission revoked, aborting capture")
                capture.abort()
                self._on_capture_finished(capture)
        self._notify()

    def _open_remediation(self) -> None:
        self.state.show_permission_dialog = True
        if self._gate.state == PermissionState.DENIED:
            self._set_status(MIC_DENIED_TEXT)
        else:
            self._set_status(MIC_UNAVAILABLE_TEXT)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_status(self, text: str | None, clear_after: float | None = None) -> None:
        self.state.status_text = text
        self._tasks.cancel("status")
        if text is not None and clear_after is not None:
            self._tasks.call_later(clear_after, self._clear_status, key="status")

    def _clear_status(self) -> None:
        self.state.status_text = None
        self._notify()

    def _show_feedback(self, text: str) -> None:
        self.state.listening_text = text
        self._tasks.call_later(FEEDBACK_CLEAR_DELAY, self._clear_listening_text, key="feedback")
        self._notify()

    def _clear_listening_text(self) -> None:
        self.state.listening_text = ""
        self._notify()

    def _save_settings(self) -> None:
        if self._on_settings_change is None:
            return
        try:
            self._on_settings_change(dict(self.settings))
        except Exception as e:
            logger.error("Settings callback failed: %s", e)

    def _schedule_login_redirect(self) -> None:
        self._tasks.call_later(LOGIN_REDIRECT_DELAY, self._redirect_login, key="login-redirect")

    def _redirect_login(self) -> None:
        logger.info("Redirecting to login")
        if self._on_redirect_login is not None:
            self._on_redirect_login()

    def _notify(self) -> None:
        if self._on_change is None or self._closed:
            return
        try:
            self._on_change(self.snapshot())
        except Exception as e:
            logger.error("State observer failed: %s", e)
