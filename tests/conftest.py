"""Shared fixtures for claude-code-sync tests."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
import pytest

from ccsync.client import SyncClient
from ccsync.config import Config

SESSION_ID = "sess-1"


def _line(entry: Dict[str, Any]) -> str:
    return json.dumps(entry)


@pytest.fixture
def transcript_lines() -> List[str]:
    """A short session: one prompt, two assistant replies, one tool call.

    msg_01 is split over three lines (thinking, text, tool_use) that repeat
    the same usage, as Claude Code writes them.
    """
    usage_01 = {
        "input_tokens": 100,
        "output_tokens": 20,
        "cache_creation_input_tokens": 1000,
        "cache_read_input_tokens": 500,
    }
    return [
        _line({
            "type": "user",
            "uuid": "u-1",
            "sessionId": SESSION_ID,
            "cwd": "/home/dev/myapp",
            "gitBranch": "main",
            "slug": "fix-login-bug",
            "timestamp": "2025-01-15T10:00:00.000Z",
            "message": {"role": "user", "content": "Fix the login bug"},
        }),
        _line({
            "type": "assistant",
            "uuid": "a-1",
            "timestamp": "2025-01-15T10:00:05.000Z",
            "message": {
                "id": "msg_01",
                "role": "assistant",
                "model": "claude-sonnet-4-20250514",
                "content": [{"type": "thinking", "thinking": "Look at the auth module"}],
                "usage": usage_01,
            },
        }),
        _line({
            "type": "assistant",
            "uuid": "a-2",
            "timestamp": "2025-01-15T10:00:06.000Z",
            "message": {
                "id": "msg_01",
                "role": "assistant",
                "model": "claude-sonnet-4-20250514",
                "content": [{"type": "text", "text": "I'll check the auth module."}],
                "usage": usage_01,
            },
        }),
        _line({
            "type": "assistant",
            "uuid": "a-3",
            "timestamp": "2025-01-15T10:00:07.000Z",
            "message": {
                "id": "msg_01",
                "role": "assistant",
                "model": "claude-sonnet-4-20250514",
                "content": [{
                    "type": "tool_use",
                    "id": "toolu_01",
                    "name": "Read",
                    "input": {"file_path": "auth.py"},
                }],
                "usage": usage_01,
            },
        }),
        _line({
            "type": "user",
            "uuid": "u-2",
            "timestamp": "2025-01-15T10:00:08.000Z",
            "message": {
                "role": "user",
                "content": [{"type": "tool_result", "tool_use_id": "toolu_01", "content": "def login(): ..."}],
            },
        }),
        _line({
            "type": "assistant",
            "uuid": "a-4",
            "timestamp": "2025-01-15T10:00:10.000Z",
            "message": {
                "id": "msg_02",
                "role": "assistant",
                "model": "claude-sonnet-4-20250514",
                "content": [{"type": "text", "text": "Fixed the bug."}],
                "usage": {
                    "input_tokens": 200,
                    "output_tokens": 50,
                    "cache_creation_input_tokens": 0,
                    "cache_read_input_tokens": 1500,
                },
            },
        }),
    ]


@pytest.fixture
def transcript_file(tmp_path: Path, transcript_lines: List[str]) -> Path:
    """Write the sample transcript to disk."""
    path = tmp_path / f"{SESSION_ID}.jsonl"
    path.write_text("\n".join(transcript_lines) + "\n")
    return path


@pytest.fixture
def config() -> Config:
    return Config(
        convex_url="https://happy-otter-123.convex.cloud",
        api_key="osk_test_key_123456",
    )


@pytest.fixture
def config_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate config, ledger and ~/.claude under tmp_path."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("CLAUDE_SYNC_CONFIG_DIR", str(home / ".config" / "claude-code-sync"))
    for var in (
        "CLAUDE_SYNC_CONVEX_URL",
        "CLAUDE_SYNC_API_KEY",
        "CLAUDE_SYNC_AUTO_SYNC",
        "CLAUDE_SYNC_TOOL_CALLS",
        "CLAUDE_SYNC_THINKING",
        "CLAUDE_SYNC_DEBUG",
    ):
        monkeypatch.delenv(var, raising=False)
    return home


class FakeBackend:
    """Records requests and answers them like the dashboard would."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.fail_paths: Dict[str, int] = {}
        self.raise_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.raise_error is not None:
            raise self.raise_error
        self.requests.append(request)
        status = self.fail_paths.get(request.url.path, self.status_code)
        if status >= 400:
            return httpx.Response(status, text="backend error")
        return httpx.Response(status, json={"ok": True})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def bodies(self, path: str) -> List[Dict[str, Any]]:
        """JSON bodies posted to an endpoint, in order."""
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client(config: Config, backend: FakeBackend) -> Iterator[SyncClient]:
    sync_client = SyncClient(config, transport=backend.transport)
    yield sync_client
    sync_client.close()


@pytest.fixture
def client_factory(backend: FakeBackend) -> Callable[[Config], SyncClient]:
    """Drop-in replacement for the SyncClient class that talks to the fake backend."""
    def factory(config: Config, **kwargs: Any) -> SyncClient:
        return SyncClient(config, transport=backend.transport)
    return factory
