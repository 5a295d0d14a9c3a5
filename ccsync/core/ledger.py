"""Session-state ledger persisted between hook invocations.

Claude Code starts a new process for every hook, so nothing survives in
memory between events. The ledger is a small JSON file mapping session ids
to accumulated counters and the set of message ids already sent. Each hook
process loads it once, mutates it, and saves it once.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from .transcript import TranscriptStats

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1

_COUNTER_FIELDS = (
    "input_tokens",
    "output_tokens",
    "cache_write_tokens",
    "cache_read_tokens",
    "message_count",
    "tool_call_count",
    "prompt_seq",
    "tool_seq",
)
_TEXT_FIELDS = (
    "transcript_path",
    "title",
    "first_prompt",
    "model",
    "cwd",
    "git_branch",
    "permission_mode",
    "started_at",
    "ended_at",
)
_ID_SET_FIELDS = ("synced_message_ids", "counted_tool_ids")


def _as_count(value: Any) -> int:
    """Non-negative int from a stored counter; anything else reads as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    try:
        return max(0, int(value))
    except (OverflowError, ValueError):
        # inf / nan
        return 0


@dataclass
class LedgerEntry:
    """Accumulated state for one session."""
    session_id: str
    transcript_path: Optional[str] = None
    title: Optional[str] = None
    first_prompt: Optional[str] = None
    model: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    permission_mode: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    message_count: int = 0
    tool_call_count: int = 0
    prompt_seq: int = 0
    tool_seq: int = 0
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    synced_message_ids: Set[str] = field(default_factory=set)
    counted_tool_ids: Set[str] = field(default_factory=set)

    @property
    def total_input_tokens(self) -> int:
        return self.input_tokens + self.cache_write_tokens + self.cache_read_tokens

    def is_synced(self, message_id: str) -> bool:
        return message_id in self.synced_message_ids

    def mark_synced(self, message_id: str) -> None:
        self.synced_message_ids.add(message_id)

    def to_stats(self) -> TranscriptStats:
        """View the accumulators as a partial transcript aggregate."""
        return TranscriptStats(
            model=self.model,
            title=self.title,
            cwd=self.cwd,
            git_branch=self.git_branch,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cache_write_tokens=self.cache_write_tokens,
            cache_read_tokens=self.cache_read_tokens,
            message_count=self.message_count,
            tool_call_count=self.tool_call_count,
            first_timestamp=self.started_at,
            last_timestamp=self.ended_at,
        )

    def absorb(self, stats: TranscriptStats) -> TranscriptStats:
        """Merge a fresh transcript scan into this entry.

        Values already held by the entry win over the scan, counters only
        grow. Returns the merged aggregate, which still carries the scan's
        extracted messages.
        """
        merged = self.to_stats().merge(stats)
        self.model = merged.model
        self.title = merged.title
        self.cwd = merged.cwd
        self.git_branch = merged.git_branch
        self.input_tokens = merged.input_tokens
        self.output_tokens = merged.output_tokens
        self.cache_write_tokens = merged.cache_write_tokens
        self.cache_read_tokens = merged.cache_read_tokens
        self.message_count = merged.message_count
        self.tool_call_count = merged.tool_call_count
        self.started_at = merged.first_timestamp
        self.ended_at = merged.last_timestamp
        return merged

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        for name in _ID_SET_FIELDS:
            data[name] = sorted(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LedgerEntry":
        """Create an entry from its serialized form.

        Counters that are not non-negative numbers read as 0 and text fields
        that are not strings read as None, so a hand-edited or partly
        corrupted entry still loads.

        Raises:
            ValueError: If the data is not a dict, has no session id, or an
                id collection is not a list.
        """
        if not isinstance(d, dict):
            raise ValueError(f"Expected dict, got {type(d).__name__}")
        session_id = d.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Ledger entry missing session_id")

        kwargs: Dict[str, Any] = {"session_id": session_id}
        for name in _COUNTER_FIELDS:
            kwargs[name] = _as_count(d.get(name))
        for name in _TEXT_FIELDS:
            value = d.get(name)
            kwargs[name] = value if isinstance(value, str) and value else None
        for name in _ID_SET_FIELDS:
            ids = d.get(name) or []
            if not isinstance(ids, list):
                raise ValueError(f"{name} must be a list")
            kwargs[name] = {str(m) for m in ids if m is not None}
        return cls(**kwargs)


class Ledger:
    """Persisted mapping of session id to LedgerEntry.

    Usage:
        ledger = Ledger.load(path)
        entry = ledger.get_or_create("abc123")
        entry.mark_synced("abc123-msg-1")
        ledger.save()
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, entries: Optional[Dict[str, LedgerEntry]] = None):
        self.path = Path(path) if path else None
        self._entries: Dict[str, LedgerEntry] = dict(entries or {})

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Ledger":
        """Load the ledger from disk.

        A missing, unreadable or corrupt file gives an empty ledger. Entries
        that fail to deserialize are dropped individually.
        """
        ledger_path = Path(path)
        ledger = cls(ledger_path)
        if not ledger_path.exists():
            return ledger

        try:
            data = json.loads(ledger_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug("Ignoring unreadable ledger %s: %s", ledger_path, e)
            return ledger

        sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(sessions, dict):
            logger.debug("Ignoring ledger with unexpected shape: %s", ledger_path)
            return ledger

        for session_id, raw in sessions.items():
            try:
                entry = LedgerEntry.from_dict(raw)
            except (TypeError, ValueError) as e:
                logger.debug("Dropping ledger entry %s: %s", session_id, e)
                continue
            ledger._entries[entry.session_id] = entry
        return ledger

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        """Write the whole ledger to disk."""
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("Ledger has no path to save to")
        target.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": LEDGER_VERSION,
            "sessions": {sid: entry.to_dict() for sid, entry in self._entries.items()},
        }
        target.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, session_id: str) -> Optional[LedgerEntry]:
        return self._entries.get(session_id)

    def get_or_create(self, session_id: str) -> LedgerEntry:
        entry = self._entries.get(session_id)
        if entry is None:
            entry = LedgerEntry(session_id=session_id)
            self._entries[session_id] = entry
        return entry

    def delete(self, session_id: str) -> bool:
        """Remove a session's entry. Returns True if one existed."""
        return self._entries.pop(session_id, None) is not None

    def sessions(self) -> List[LedgerEntry]:
        return list(self._entries.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
