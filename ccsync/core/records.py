"""Session and message records sent to the dashboard backend."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

SOURCE = "claude-code"


class HookEvent(str, Enum):
    """Hook events emitted by Claude Code that we forward."""
    SESSION_START = "SessionStart"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    POST_TOOL_USE = "PostToolUse"
    STOP = "Stop"
    SESSION_END = "SessionEnd"


class Role(str, Enum):
    """Message author roles."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class TokenUsage:
    """Input/output token totals for a session."""
    input: int = 0
    output: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "output": self.output}


@dataclass
class SessionRecord:
    """A Claude Code session as seen by the dashboard."""
    session_id: str
    source: str = SOURCE
    title: Optional[str] = None
    cwd: Optional[str] = None
    project_path: Optional[str] = None
    project_name: Optional[str] = None
    git_branch: Optional[str] = None
    model: Optional[str] = None
    permission_mode: Optional[str] = None
    start_type: Optional[str] = None
    end_reason: Optional[str] = None
    message_count: Optional[int] = None
    tool_call_count: Optional[int] = None
    token_usage: Optional[TokenUsage] = None
    cost_estimate: Optional[float] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[int]:
        """Milliseconds between start and end, if both are known."""
        start = parse_timestamp(self.started_at)
        end = parse_timestamp(self.ended_at)
        if start is None or end is None:
            return None
        return int((end - start).total_seconds() * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "source": self.source,
            "title": self.title,
            "cwd": self.cwd,
            "project_path": self.project_path,
            "project_name": self.project_name,
            "git_branch": self.git_branch,
            "model": self.model,
            "permission_mode": self.permission_mode,
            "start_type": self.start_type,
            "end_reason": self.end_reason,
            "message_count": self.message_count,
            "tool_call_count": self.tool_call_count,
            "token_usage": self.token_usage.to_dict() if self.token_usage else None,
            "cost_estimate": self.cost_estimate,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


@dataclass
class MessageRecord:
    """A single user prompt, tool invocation or assistant reply."""
    session_id: str
    message_id: str
    role: Role
    source: str = SOURCE
    content: Optional[str] = None
    thinking_content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_args: Optional[Dict[str, Any]] = None
    tool_result: Optional[str] = None
    parts: List[Dict[str, Any]] = field(default_factory=list)
    duration_ms: Optional[int] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "message_id": self.message_id,
            "role": self.role.value if isinstance(self.role, Role) else self.role,
            "source": self.source,
            "content": self.content,
            "thinking_content": self.thinking_content,
            "tool_name": self.tool_name,
            "tool_args": self.tool_args,
            "tool_result": self.tool_result,
            "parts": self.parts,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp,
        }


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, accepting a trailing 'Z'.

    Returns None for missing or unparseable values. Naive timestamps are
    assumed to be UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
