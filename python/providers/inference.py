"""HTTP client for the AI health assistant inference service."""

import asyncio
import json
import logging
import socket
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass

from shared.errors import InferenceError

from .config import DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InferenceReply:
    """Reply returned by ``POST /message``."""

    text: str
    suggest_appointment: bool = False
    self_care_appropriate: bool | None = True
    conversation_reset: bool = False

    @classmethod
    def from_json(cls, data: dict) -> "InferenceReply":
        text = data.get("text")
        if not isinstance(text, str):
            raise InferenceError(InferenceError.SERVER_ERROR, "Reply is missing its text")
        self_care = data.get("selfCareAppropriate")
        return cls(
            text=text,
            suggest_appointment=bool(data.get("suggestAppointment", False)),
            # A missing flag means self-care was not confirmed
            self_care_appropriate=None if self_care is None else bool(self_care),
            conversation_reset=bool(data.get("conversationReset", False)),
        )


def classify_http_error(status: int, body: dict | None = None) -> InferenceError:
    """Map an HTTP error status to an InferenceError."""
    body = body or {}
    if status in (401, 403):
        return InferenceError(InferenceError.UNAUTHENTICATED, f"HTTP {status}")
    if status == 429:
        retry_after = body.get("retryAfter") or "30s"
        return InferenceError(InferenceError.RATE_LIMITED, "Request quota exceeded", retry_after=str(retry_after))
    return InferenceError(InferenceError.SERVER_ERROR, body.get("message") or f"HTTP {status}")


class InferenceClient:
    """
    Client for the assistant's inference endpoint.

    Requests are made with urllib on the default executor so the event
    loop is never blocked. A missing bearer token is detected before any
    network call is attempted.
    """

    def __init__(
        self,
        base_url: str,
        token_getter: Callable[[], str | None],
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self._get_token = token_getter
        self.timeout = timeout

    def has_token(self) -> bool:
        return bool(self._get_token())

    async def send_message(self, message: str, history: list[dict]) -> InferenceReply:
        """
        Send a user message with its conversation history.

        Raises:
            InferenceError: unauthenticated, rate-limited, server-error or network
        """
        token = self._get_token()
        if not token:
            raise InferenceError(InferenceError.UNAUTHENTICATED, "Authentication required")

        payload = {"message": message, "conversationHistory": history}
        data = await self._post("/message", payload, token)
        return InferenceReply.from_json(data)

    async def _post(self, endpoint: str, payload: dict, token: str) -> dict:
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        def _fetch():
            req = urllib.request.Request(url, headers=headers, method="POST")
            req.data = json.dumps(payload).encode()
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read().decode())

        loop = asyncio.get_running_loop()
        try:
            # The socket timeout covers each read; wait_for caps the whole call
            return await asyncio.wait_for(
                loop.run_in_executor(None, _fetch),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Inference request timed out after %ss", self.timeout)
            raise InferenceError(InferenceError.NETWORK, "Request timed out") from None
        except urllib.error.HTTPError as e:
            body = _read_error_body(e)
            logger.warning("Inference request failed: HTTP %s", e.code)
            raise classify_http_error(e.code, body) from e
        except (urllib.error.URLError, socket.timeout, ConnectionError) as e:
            logger.warning("Inference service unreachable: %s", e)
            raise InferenceError(InferenceError.NETWORK, str(e)) from e
        except json.JSONDecodeError as e:
            logger.warning("Inference service returned invalid JSON: %s", e)
            raise InferenceError(InferenceError.SERVER_ERROR, "Invalid response") from e


def _read_error_body(error: urllib.error.HTTPError) -> dict:
    try:
        data = json.loads(error.read().decode())
        return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        return {}
