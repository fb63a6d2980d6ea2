"""
HTTP client for the automation agent's webhook gateway.

Hands work to the agent as a natural-language message and treats the
response as accept/reject only: 2xx (typically 202) means the agent took the
task, anything else is a dispatch failure. Results come back later through
the completion callback, never through this client.

Keeps a small connectivity record (last trigger, last success, last error)
so the application can report whether the agent looks reachable.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from .errors import DispatchFailed
from .types import utc_now

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://localhost:18789"
DEFAULT_TIMEOUT = 30.0
HOOK_PATH = "/hooks/agent"

AGENT_NAME = "Snippets"


@dataclass
class Connectivity:
    """Outcome of the most recent trigger attempts."""
    last_trigger_at: Optional[str] = None
    last_success_at: Optional[str] = None
    last_error: Optional[str] = None
    last_trigger_ok: Optional[bool] = None


class AgentClient:
    """Webhook client for the automation agent."""

    def __init__(
        self,
        gateway_url: str = DEFAULT_GATEWAY_URL,
        hooks_token: Optional[str] = None,
        *,
        model: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._gateway_url = gateway_url.rstrip("/")
        self._hooks_token = hooks_token or None
        self._model = model

        # Bearer token over cleartext is only acceptable on loopback
        if self._hooks_token and not self._gateway_url.startswith("https://"):
            host = urlparse(self._gateway_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                logger.warning(
                    "Agent gateway %s is not HTTPS; hooks token is sent in cleartext",
                    self._gateway_url,
                )

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._hooks_token:
            headers["Authorization"] = f"Bearer {self._hooks_token}"

        self._client = httpx.Client(
            base_url=self._gateway_url,
            headers=headers,
            timeout=timeout,
        )
        self._connectivity = Connectivity()
        self._lock = threading.Lock()

    @property
    def gateway_url(self) -> str:
        return self._gateway_url

    @property
    def configured(self) -> bool:
        """True if a hooks token is set; without one nothing can be dispatched."""
        return self._hooks_token is not None

    @property
    def connectivity(self) -> Connectivity:
        with self._lock:
            return Connectivity(**vars(self._connectivity))

    def _mark(self, ok: bool, error: Optional[str] = None) -> None:
        now = utc_now()
        with self._lock:
            self._connectivity.last_trigger_at = now
            self._connectivity.last_trigger_ok = ok
            if ok:
                self._connectivity.last_success_at = now
                self._connectivity.last_error = None
            else:
                self._connectivity.last_error = error or "Unknown trigger error"

    def trigger(self, name: str, message: str, *, model: Optional[str] = None) -> None:
        """
        POST a task to the agent.

        Raises:
            DispatchFailed: no token configured, non-2xx response, or a
                transport error
        """
        if not self.configured:
            error = "No hooks token configured"
            self._mark(False, error)
            raise DispatchFailed(error)

        payload: dict = {
            "name": name,
            "message": message,
            "wakeMode": "now",
            "deliver": False,
        }
        if model or self._model:
            payload["model"] = model or self._model

        try:
            resp = self._client.post(HOOK_PATH, json=payload)
        except httpx.HTTPError as e:
            error = f"Trigger error: {e}"
            logger.warning("[agent] %s", error)
            self._mark(False, error)
            raise DispatchFailed(error) from e

        if resp.is_success or resp.status_code == 202:
            logger.info("[agent] Triggered %r", name)
            self._mark(True)
            return

        error = f"Trigger failed: {resp.status_code} {resp.text}".strip()
        logger.warning("[agent] %s", error)
        self._mark(False, error)
        raise DispatchFailed(error)

    def trigger_processing(self, note_id: str, base_url: str) -> None:
        """Ask the agent to work through the pending queue now."""
        api = base_url.rstrip("/") + "/api"
        message = (
            f"Process {AGENT_NAME} pending queue now. Newly created note id: {note_id}. "
            f"Read {api}/pending, process each note: classify and set folderPath, "
            f"move with {api}/notes/<id>/move, update frontmatter, "
            f"then DELETE {api}/pending/<id>."
        )
        self.trigger(AGENT_NAME, message)

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()
