#!/usr/bin/env python3
"""
Assistant Bridge for SoulSpace

Runs one AssistantSessionController behind a JSON-lines IPC channel for
the UI host process. Outputs structured JSON events to stdout, reads
commands from stdin. Log output goes to stderr and the data dir, never
to stdout.

Usage:
    python assistant_bridge.py

Events sent to the host (stdout):
    {"event": "starting", "data": {}}
    {"event": "ready", "data": {<session snapshot>}}
    {"event": "state", "data": {<session snapshot>}}
    {"event": "redirect_login", "data": {}}
    {"event": "book_appointment", "data": {"message": {...}}}
    {"event": "pong", "data": {}}
    {"event": "error", "data": {"message": "...", "code": "..."}}
    {"event": "stopping", "data": {}}

Commands from the host (stdin):
    {"command": "start_voice"}
    {"command": "stop_voice"}
    {"command": "send", "text": "..."}
    {"command": "toggle_voice"}
    {"command": "clear_chat"}
    {"command": "show_tips"}
    {"command": "use_alternative"}
    {"command": "dismiss_permission"}
    {"command": "retry_permission"}
    {"command": "book_appointment", "id": 3}
    {"command": "state"}
    {"command": "ping"}
    {"command": "stop"}
"""

import asyncio
import json
import logging
import os
import queue
import sys
import threading

from shared.errors import AssistantError, CaptureError
from shared.paths import get_data_dir

# Force UTF-8 output on Windows (cp1252 can't encode every reply)
if sys.platform == 'win32':
    os.environ.setdefault('PYTHONIOENCODING', 'utf-8')
    if hasattr(sys.stdout, 'reconfigure'):
        sys.stdout.reconfigure(encoding='utf-8', errors='replace')
    if hasattr(sys.stderr, 'reconfigure'):
        sys.stderr.reconfigure(encoding='utf-8', errors='replace')

logger = logging.getLogger("assistant_bridge")

# Command queue for stdin commands
command_queue = queue.Queue()

# Keep reference to original stdout for emitting events
_original_stdout = sys.stdout

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def init_logging(level: int = logging.INFO) -> None:
    """Log to stderr and to assistant.log in the data dir (append mode)."""
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root.addHandler(stderr_handler)

    try:
        log_dir = get_data_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "assistant.log", mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        logger.warning("Failed to init log file: %s", e)


def emit_event(event: str, data: dict = None):
    """Send a JSON event to the host via stdout."""
    payload = {"event": event, "data": data or {}}
    _original_stdout.write(json.dumps(payload) + "\n")
    try:
        _original_stdout.flush()
    except OSError:
        pass  # Flush can fail on Windows unbuffered pipes
    if event not in ("state", "pong"):
        logger.info("-> %s", event)


def emit_error(message: str, code: str | None = None):
    """Send an error event."""
    data = {"message": message}
    if code:
        data["code"] = code
    emit_event("error", data)


def stdin_reader():
    """Read commands from stdin in a separate thread."""
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            cmd = json.loads(line)
            command_queue.put(cmd)
        except json.JSONDecodeError as e:
            emit_error(f"Invalid JSON command: {e}")
    # Host closed the pipe
    command_queue.put({"command": "stop"})


def build_controller(settings: dict, transcriber, on_change, on_redirect_login, on_book_appointment,
                     on_settings_change=None):
    """Wire the sounddevice, STT, TTS and HTTP adapters into a session controller."""
    from assistant import AssistantSessionController
    from audio.microphone import SoundDeviceMicrophone, SoundDeviceRecorder
    from audio.permission import PermissionGate
    from providers import InferenceClient, get_auth_token, get_service_config, get_user_name
    from stt.live import LocalRecognitionEngine
    from tts import create_tts_adapter, init_speech_player

    service = get_service_config()
    inference = InferenceClient(service["base_url"], get_auth_token, timeout=service["timeout"])

    synthesizer = create_tts_adapter(
        settings["tts_adapter"],
        voice=settings["tts_voice"],
        speed=float(settings["tts_speed"]),
        volume=float(settings["tts_volume"]),
    )
    player = init_speech_player(synthesizer, enabled=bool(settings["voice_output_enabled"]))

    def engine_factory():
        return LocalRecognitionEngine(
            transcriber,
            silence_timeout=float(settings["silence_timeout"]),
            no_speech_timeout=float(settings["no_speech_timeout"]),
        )

    return AssistantSessionController(
        gate=PermissionGate(SoundDeviceMicrophone()),
        inference=inference,
        engine_factory=engine_factory,
        recorder_factory=SoundDeviceRecorder,
        player=player,
        transcriber=transcriber,
        settings=settings,
        user_name=get_user_name(),
        on_change=on_change,
        on_redirect_login=on_redirect_login,
        on_book_appointment=on_book_appointment,
        on_settings_change=on_settings_change,
    )


async def load_transcriber(settings: dict):
    """Create and load the configured STT adapter. Returns None when unavailable."""
    from stt import create_stt_adapter

    try:
        stt = create_stt_adapter(settings["stt_adapter"], settings.get("stt_model"))
    except ValueError as e:
        logger.error("%s", e)
        return None
    if not await stt.ensure_loaded():
        logger.warning("STT adapter %s unavailable, voice input will not be transcribed", stt.name)
        return None
    return stt


async def start_voice(controller):
    try:
        await controller.start_voice_input()
    except CaptureError as e:
        emit_error(str(e), e.code)


async def use_alternative(controller):
    try:
        await controller.use_alternative_capture()
    except CaptureError as e:
        emit_error(str(e), e.code)


async def process_commands(controller):
    """Process commands from the host."""
    tasks: set[asyncio.Task] = set()

    def spawn(coro):
        task = asyncio.ensure_future(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    while True:
        try:
            # Non-blocking check for commands
            try:
                cmd = command_queue.get_nowait()
            except queue.Empty:
                await asyncio.sleep(0.05)
                continue

            command = cmd.get("command")

            if command == "start_voice":
                spawn(start_voice(controller))

            elif command == "stop_voice":
                controller.stop_voice_input()

            elif command == "send":
                spawn(controller.send_message(cmd.get("text", "")))

            elif command == "toggle_voice":
                controller.toggle_voice_output()

            elif command == "clear_chat":
                controller.clear_chat()

            elif command == "show_tips":
                controller.show_tips()

            elif command == "use_alternative":
                spawn(use_alternative(controller))

            elif command == "dismiss_permission":
                controller.dismiss_permission_dialog()

            elif command == "retry_permission":
                spawn(controller.retry_permission())

            elif command == "book_appointment":
                if not controller.book_appointment(cmd.get("id")):
                    emit_error(f"Message {cmd.get('id')} has no appointment suggestion")

            elif command == "state":
                emit_event("state", controller.snapshot().to_dict())

            elif command == "ping":
                emit_event("pong", {})

            elif command == "stop":
                emit_event("stopping", {})
                break

            else:
                emit_error(f"Unknown command: {command}")

        except AssistantError as e:
            emit_error(str(e))
        except Exception as e:
            logger.exception("Command failed")
            emit_error(str(e))

    for task in list(tasks):
        task.cancel()


async def main():
    """Main entry point for the assistant bridge."""
    init_logging()

    # Emit startup event immediately
    emit_event("starting", {})

    # Start stdin reader thread
    stdin_thread = threading.Thread(target=stdin_reader, daemon=True)
    stdin_thread.start()

    from settings import load_voice_settings, save_voice_settings
    from tts import shutdown_speech_player

    controller = None
    try:
        settings = load_voice_settings()
        transcriber = await load_transcriber(settings)

        controller = build_controller(
            settings,
            transcriber,
            on_change=lambda snapshot: emit_event("state", snapshot.to_dict()),
            on_redirect_login=lambda: emit_event("redirect_login", {}),
            on_book_appointment=lambda message: emit_event("book_appointment", {"message": message.to_dict()}),
            on_settings_change=save_voice_settings,
        )
        await controller.start()
        emit_event("ready", controller.snapshot().to_dict())

        await process_commands(controller)

    except ImportError as e:
        emit_error(f"Failed to import assistant modules: {e}")
        sys.exit(1)
    except Exception as e:
        logger.exception("Assistant bridge error")
        emit_error(f"Assistant error: {e}")
        sys.exit(1)
    finally:
        if controller is not None:
            controller.close()
        shutdown_speech_player()
        logger.info("Shutting down")


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
