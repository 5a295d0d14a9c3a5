"""Claude Code transcript scanning.

A transcript is the append-only JSONL log Claude Code writes for a session.
Each hook invocation is a fresh process, so the whole file is re-read every
time and the result is reconciled with what the ledger already knows using
``TranscriptStats.merge``.

Usage:

    from ccsync.core.transcript import scan_transcript

    stats = scan_transcript("~/.claude/projects/-repo/abc123.jsonl")
    print(stats.model, stats.input_tokens, stats.output_tokens)
    for message in stats.assistant_messages:
        print(message.id, message.text[:80])
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from .records import parse_timestamp

logger = logging.getLogger(__name__)

# User entries Claude Code writes itself; none of them fires UserPromptSubmit
SYNTHETIC_PROMPT_PREFIXES = (
    "[Request interrupted by user",
    "<command-name>",
    "<command-message>",
    "<command-args>",
    "<local-command-stdout>",
    "<local-command-stderr>",
    "Caveat: The messages below were generated by the user while running local commands",
)


def is_synthetic_prompt(text: str) -> bool:
    """True for interrupt markers and local-command wrappers."""
    return text.lstrip().startswith(SYNTHETIC_PROMPT_PREFIXES)


@dataclass
class TranscriptMessage:
    """A textual message extracted from a transcript."""
    id: str
    text: str
    timestamp: Optional[str] = None
    thinking: Optional[str] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "timestamp": self.timestamp,
            "thinking": self.thinking,
            "model": self.model,
        }


@dataclass
class TranscriptStats:
    """Aggregate statistics for one transcript.

    Attributes:
        model: First model seen on an assistant entry
        title: First session title (summary or slug) seen
        cwd: First working directory seen
        git_branch: First git branch seen
        input_tokens: Uncached input tokens
        output_tokens: Output tokens
        cache_write_tokens: Cache creation input tokens
        cache_read_tokens: Cache read input tokens
        message_count: User prompts plus distinct assistant messages
        tool_call_count: Distinct tool_use blocks
        first_timestamp: Timestamp of the first entry
        last_timestamp: Timestamp of the last entry
        assistant_messages: Assistant replies carrying text
        prompts: User prompts carrying text
        malformed_lines: Lines skipped because they were not JSON objects
    """
    model: Optional[str] = None
    title: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0
    message_count: int = 0
    tool_call_count: int = 0
    first_timestamp: Optional[str] = None
    last_timestamp: Optional[str] = None
    assistant_messages: List[TranscriptMessage] = field(default_factory=list)
    prompts: List[TranscriptMessage] = field(default_factory=list)
    malformed_lines: int = field(default=0, compare=False)

    @property
    def total_input_tokens(self) -> int:
        """All input tokens, cached or not."""
        return self.input_tokens + self.cache_write_tokens + self.cache_read_tokens

    @property
    def duration_ms(self) -> Optional[int]:
        start = parse_timestamp(self.first_timestamp)
        end = parse_timestamp(self.last_timestamp)
        if start is None or end is None:
            return None
        return int((end - start).total_seconds() * 1000)

    def merge(self, other: "TranscriptStats") -> "TranscriptStats":
        """Combine two partial aggregates of the same session.

        Identity fields keep the first non-empty value (self wins), counters
        take the larger value, the time window widens, and message lists are
        unioned by id. The result never holds less than either operand.
        """
        return TranscriptStats(
            model=self.model or other.model,
            title=self.title or other.title,
            cwd=self.cwd or other.cwd,
            git_branch=self.git_branch or other.git_branch,
            input_tokens=max(self.input_tokens, other.input_tokens),
            output_tokens=max(self.output_tokens, other.output_tokens),
            cache_write_tokens=max(self.cache_write_tokens, other.cache_write_tokens),
            cache_read_tokens=max(self.cache_read_tokens, other.cache_read_tokens),
            message_count=max(self.message_count, other.message_count),
            tool_call_count=max(self.tool_call_count, other.tool_call_count),
            first_timestamp=_earliest(self.first_timestamp, other.first_timestamp),
            last_timestamp=_latest(self.last_timestamp, other.last_timestamp),
            assistant_messages=_union(self.assistant_messages, other.assistant_messages),
            prompts=_union(self.prompts, other.prompts),
            malformed_lines=max(self.malformed_lines, other.malformed_lines),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "title": self.title,
            "cwd": self.cwd,
            "git_branch": self.git_branch,
            "tokens": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "cache_write": self.cache_write_tokens,
                "cache_read": self.cache_read_tokens,
            },
            "message_count": self.message_count,
            "tool_call_count": self.tool_call_count,
            "first_timestamp": self.first_timestamp,
            "last_timestamp": self.last_timestamp,
            "duration_ms": self.duration_ms,
            "assistant_messages": [m.to_dict() for m in self.assistant_messages],
            "prompts": [m.to_dict() for m in self.prompts],
        }


class TranscriptScanner:
    """Single-pass accumulator over transcript entries."""

    def __init__(self):
        self.stats = TranscriptStats()
        self._assistant_ids: Set[str] = set()
        self._usage_ids: Set[str] = set()
        self._tool_ids: Set[str] = set()
        self._messages: Dict[str, TranscriptMessage] = {}
        self._pending_thinking: Dict[str, List[str]] = {}

    def feed_line(self, line: str) -> None:
        """Parse and apply one raw line, skipping blanks and malformed JSON."""
        line = line.strip()
        if not line:
            return
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            self.stats.malformed_lines += 1
            return
        if not isinstance(entry, dict):
            self.stats.malformed_lines += 1
            return
        self.feed(entry)

    def feed(self, entry: Dict[str, Any]) -> None:
        """Apply one parsed transcript entry."""
        stats = self.stats

        timestamp = entry.get("timestamp")
        if isinstance(timestamp, str) and timestamp:
            if stats.first_timestamp is None:
                stats.first_timestamp = timestamp
            stats.last_timestamp = timestamp

        if not stats.cwd and _is_text(entry.get("cwd")):
            stats.cwd = entry["cwd"]
        if not stats.git_branch and _is_text(entry.get("gitBranch")):
            stats.git_branch = entry["gitBranch"]
        if not stats.title:
            if entry.get("type") == "summary" and _is_text(entry.get("summary")):
                stats.title = entry["summary"]
            elif _is_text(entry.get("slug")):
                stats.title = entry["slug"]

        entry_type = entry.get("type")
        message = entry.get("message")
        if not isinstance(message, dict):
            return

        if entry_type == "user":
            self._feed_user(entry, message)
        elif entry_type == "assistant":
            self._feed_assistant(entry, message)

    def _feed_user(self, entry: Dict[str, Any], message: Dict[str, Any]) -> None:
        if entry.get("isMeta") or entry.get("isCompactSummary"):
            return
        text = extract_text(message.get("content"))
        if not text:
            # tool_result-only entries are not prompts
            return
        if is_synthetic_prompt(text):
            return
        self.stats.message_count += 1
        prompt_id = entry.get("uuid") or f"prompt-{len(self.stats.prompts) + 1}"
        self.stats.prompts.append(
            TranscriptMessage(id=str(prompt_id), text=text, timestamp=entry.get("timestamp"))
        )

    def _feed_assistant(self, entry: Dict[str, Any], message: Dict[str, Any]) -> None:
        stats = self.stats
        message_id = message.get("id") or entry.get("uuid")
        message_id = str(message_id) if message_id else None

        model = message.get("model")
        if not stats.model and _is_text(model) and not model.startswith("<"):
            stats.model = model

        usage = message.get("usage")
        if isinstance(usage, dict) and (message_id is None or message_id not in self._usage_ids):
            stats.input_tokens += _as_int(usage.get("input_tokens"))
            stats.output_tokens += _as_int(usage.get("output_tokens"))
            stats.cache_write_tokens += _as_int(usage.get("cache_creation_input_tokens"))
            stats.cache_read_tokens += _as_int(usage.get("cache_read_input_tokens"))
            if message_id is not None:
                self._usage_ids.add(message_id)

        if message_id is None or message_id not in self._assistant_ids:
            stats.message_count += 1
            if message_id is not None:
                self._assistant_ids.add(message_id)

        content = message.get("content")
        if isinstance(content, list):
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "tool_use":
                    continue
                tool_id = block.get("id")
                if tool_id:
                    if tool_id in self._tool_ids:
                        continue
                    self._tool_ids.add(tool_id)
                stats.tool_call_count += 1

        if message_id is None:
            return

        thinking = extract_thinking(content)
        if thinking:
            existing = self._messages.get(message_id)
            if existing is not None:
                existing.thinking = _join(existing.thinking, thinking)
            else:
                self._pending_thinking.setdefault(message_id, []).append(thinking)

        text = extract_text(content)
        if not text or message_id in self._messages:
            return
        pending = self._pending_thinking.pop(message_id, None)
        extracted = TranscriptMessage(
            id=message_id,
            text=text,
            timestamp=entry.get("timestamp"),
            thinking="\n".join(pending) if pending else None,
            model=model if _is_text(model) else None,
        )
        self._messages[message_id] = extracted
        stats.assistant_messages.append(extracted)


def scan_lines(lines: Iterable[str]) -> TranscriptStats:
    """Scan an iterable of raw transcript lines."""
    scanner = TranscriptScanner()
    for line in lines:
        scanner.feed_line(line)
    return scanner.stats


def scan_transcript(path: Optional[Union[str, Path]]) -> TranscriptStats:
    """Scan a transcript file.

    A missing path or file yields empty stats rather than an error, and a
    file that cannot be read part way through keeps what was read so far.

    Args:
        path: Path to the JSONL transcript

    Returns:
        Aggregated TranscriptStats
    """
    scanner = TranscriptScanner()
    if not path:
        return scanner.stats

    transcript_path = Path(path).expanduser()
    if not transcript_path.is_file():
        return scanner.stats

    try:
        with open(transcript_path, encoding="utf-8", errors="replace") as f:
            for line in f:
                scanner.feed_line(line)
    except OSError as e:
        logger.warning("Error reading transcript %s: %s", transcript_path, e)

    if scanner.stats.malformed_lines:
        logger.debug(
            "Skipped %d malformed lines in %s",
            scanner.stats.malformed_lines,
            transcript_path,
        )
    return scanner.stats


def extract_text(content: Any) -> Optional[str]:
    """Join the text blocks of a message's content."""
    if isinstance(content, str):
        return content.strip() or None
    if not isinstance(content, list):
        return None
    texts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if _is_text(text):
                texts.append(text)
        elif isinstance(block, str) and block.strip():
            texts.append(block)
    return "\n".join(texts) if texts else None


def extract_thinking(content: Any) -> Optional[str]:
    """Join the thinking blocks of a message's content."""
    if not isinstance(content, list):
        return None
    parts = [
        block["thinking"]
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "thinking"
        and _is_text(block.get("thinking"))
    ]
    return "\n".join(parts) if parts else None


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    return 0


def _join(first: Optional[str], second: str) -> str:
    return f"{first}\n{second}" if first else second


def _earliest(a: Optional[str], b: Optional[str]) -> Optional[str]:
    pa, pb = parse_timestamp(a), parse_timestamp(b)
    if pa is None:
        return a or b if pb is None else b
    if pb is None:
        return a
    return a if pa <= pb else b


def _latest(a: Optional[str], b: Optional[str]) -> Optional[str]:
    pa, pb = parse_timestamp(a), parse_timestamp(b)
    if pa is None:
        return a or b if pb is None else b
    if pb is None:
        return a
    return a if pa >= pb else b


def _union(
    first: List[TranscriptMessage],
    second: List[TranscriptMessage],
) -> List[TranscriptMessage]:
    seen = {m.id for m in first}
    merged = list(first)
    for message in second:
        if message.id not in seen:
            seen.add(message.id)
            merged.append(message)
    return merged
