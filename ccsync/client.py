"""HTTP client for the dashboard's sync endpoints."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Config
from .core.records import MessageRecord, Role, SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class SyncError(Exception):
    """Base exception for sync failures."""


class SyncHTTPError(SyncError):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Sync failed: {status_code} - {body}")


class SyncConnectionError(SyncError):
    """The backend could not be reached."""


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if v is not None}


def transform_session(session: SessionRecord) -> Dict[str, Any]:
    """Map a SessionRecord to the backend's session payload."""
    usage = session.token_usage
    return _compact({
        "externalId": session.session_id,
        "title": session.title,
        "projectPath": session.project_path or session.cwd,
        "projectName": session.project_name,
        "model": session.model,
        "source": session.source,
        "promptTokens": usage.input if usage else None,
        "completionTokens": usage.output if usage else None,
        "cost": session.cost_estimate,
        "durationMs": session.duration_ms,
    })


def transform_message(message: MessageRecord) -> Dict[str, Any]:
    """Map a MessageRecord to the backend's message payload.

    Tool messages without explicit parts get a tool-call/tool-result pair.
    """
    parts: Optional[List[Dict[str, Any]]] = None
    if message.parts:
        parts = message.parts
    elif message.tool_name:
        parts = [
            {"type": "tool-call", "content": {"name": message.tool_name, "args": message.tool_args}},
            {"type": "tool-result", "content": {"result": message.tool_result}},
        ]

    return _compact({
        "sessionExternalId": message.session_id,
        "externalId": message.message_id,
        "role": message.role.value if isinstance(message.role, Role) else message.role,
        "textContent": message.content,
        "thinkingContent": message.thinking_content,
        "durationMs": message.duration_ms,
        "source": message.source,
        "parts": parts,
    })


class SyncClient:
    """Client for the dashboard's HTTP actions.

    Usage:
        client = SyncClient(load_config())
        client.sync_session(SessionRecord(session_id="abc123"))
        client.close()
    """

    def __init__(
        self,
        config: Config,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            config: Connection settings
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.site_url = config.site_url
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def __enter__(self) -> "SyncClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, endpoint: str, data: Any) -> Any:
        """POST JSON to an endpoint and return the decoded response."""
        url = f"{self.site_url}{endpoint}"
        try:
            response = self._client.post(
                url,
                json=data,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
            )
        except httpx.RequestError as e:
            raise SyncConnectionError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            raise SyncHTTPError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError:
            return {}

    def sync_session(self, session: SessionRecord) -> Any:
        logger.debug("Syncing session %s", session.session_id)
        return self._request("/sync/session", transform_session(session))

    def sync_message(self, message: MessageRecord) -> Any:
        logger.debug("Syncing message %s", message.message_id)
        return self._request("/sync/message", transform_message(message))

    def sync_batch(self, sessions: List[SessionRecord], messages: List[MessageRecord]) -> Any:
        """Send many sessions and messages in one request."""
        logger.debug("Syncing batch: %d sessions, %d messages", len(sessions), len(messages))
        return self._request("/sync/batch", {
            "sessions": [transform_session(s) for s in sessions],
            "messages": [transform_message(m) for m in messages],
        })

    def test_connection(self) -> bool:
        """Check the backend's /health endpoint."""
        try:
            response = self._client.get(f"{self.site_url}/health")
        except httpx.HTTPError as e:
            logger.debug("Health check failed: %s", e)
            return False
        return response.is_success
