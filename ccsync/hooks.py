"""Claude Code hook handling.

Every hook firing runs ``claude-code-sync hook <Event>`` as a new process
with the event payload on stdin. ``HookProcessor`` turns that payload plus
the session's ledger entry into session and message records and sends them.

Registration in Claude Code's settings file:

    {
      "hooks": {
        "SessionStart": [{"hooks": [{"type": "command",
                                      "command": "claude-code-sync hook SessionStart"}]}],
        ...
      }
    }

``install_hooks`` writes that block and ``validate_hooks`` checks it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .client import SyncClient, SyncError
from .config import Config
from .core.ledger import Ledger, LedgerEntry
from .core.pricing import calculate_cost
from .core.records import HookEvent, MessageRecord, Role, SessionRecord, TokenUsage, utc_now
from .core.transcript import TranscriptStats, scan_transcript

logger = logging.getLogger(__name__)

COMMAND_NAME = "claude-code-sync"
MAX_TITLE_CHARS = 80
MAX_TOOL_RESULT_CHARS = 10_000

# Hook events that take a tool matcher in settings.json
_MATCHER_EVENTS = (HookEvent.POST_TOOL_USE, HookEvent.STOP)


def truncate(text: str, max_length: int = 200) -> str:
    """Truncate text to max_length with ellipsis."""
    if not text:
        return ""
    text = str(text)
    if len(text) <= max_length:
        return text
    if max_length < 4:
        return text[:max_length]
    return text[:max_length - 3] + "..."


def derive_title(prompt: Optional[str]) -> Optional[str]:
    """Session title from the first non-empty line of a prompt."""
    if not prompt:
        return None
    for line in prompt.splitlines():
        line = " ".join(line.split())
        if line:
            return truncate(line, MAX_TITLE_CHARS)
    return None


def read_git_branch(cwd: Optional[str]) -> Optional[str]:
    """Current branch from <cwd>/.git/HEAD, or None when detached or absent."""
    if not cwd:
        return None
    head_file = Path(cwd) / ".git" / "HEAD"
    try:
        head = head_file.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    prefix = "ref: refs/heads/"
    if head.startswith(prefix):
        return head[len(prefix):]
    return None


class HookProcessor:
    """Transforms hook payloads into records and sends them.

    The ledger is passed in already loaded; the caller saves it afterwards,
    whether or not sending succeeded.

    Usage:
        ledger = Ledger.load(ledger_path())
        with SyncClient(config) as client:
            try:
                HookProcessor(config, ledger, client).handle("Stop", payload)
            finally:
                ledger.save()
    """

    def __init__(self, config: Config, ledger: Ledger, client: SyncClient):
        self.config = config
        self.ledger = ledger
        self.client = client
        self._handlers: Dict[HookEvent, Callable[[str, Dict[str, Any]], None]] = {
            HookEvent.SESSION_START: self.on_session_start,
            HookEvent.USER_PROMPT_SUBMIT: self.on_user_prompt,
            HookEvent.POST_TOOL_USE: self.on_tool_use,
            HookEvent.STOP: self.on_stop,
            HookEvent.SESSION_END: self.on_session_end,
        }

    def handle(self, event_name: str, payload: Dict[str, Any]) -> bool:
        """Dispatch one hook event.

        Returns:
            True if the event was recognized and processed

        Raises:
            SyncError: If sending a record fails.
        """
        try:
            event = HookEvent(event_name)
        except ValueError:
            logger.debug("Ignoring unsupported hook event: %s", event_name)
            return False

        session_id = payload.get("session_id") or payload.get("sessionId")
        if not session_id:
            logger.warning("%s payload has no session id", event.value)
            return False

        self._handlers[event](str(session_id), payload)
        return True

    # =====================
    # Event handlers
    # =====================

    def on_session_start(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = self.ledger.get_or_create(session_id)
        if not entry.started_at:
            entry.started_at = utc_now()
        if payload.get("cwd") and not entry.cwd:
            entry.cwd = payload["cwd"]
        if payload.get("permission_mode"):
            entry.permission_mode = payload["permission_mode"]
        self._refresh(entry, payload)
        if not entry.git_branch:
            entry.git_branch = read_git_branch(entry.cwd)

        source = payload.get("source")
        session = self._session_record(entry)
        session.start_type = "new" if source in (None, "startup") else source

        logger.info("SessionStart: session=%s, transcript=%s", session_id, entry.transcript_path)
        self.client.sync_session(session)

    def on_user_prompt(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = self.ledger.get_or_create(session_id)
        prompt = payload.get("prompt")
        entry.prompt_seq += 1
        entry.message_count += 1

        new_title = False
        if prompt and entry.first_prompt is None:
            entry.first_prompt = prompt
            if not entry.title:
                entry.title = derive_title(prompt)
                new_title = entry.title is not None

        message = MessageRecord(
            session_id=session_id,
            message_id=f"{session_id}-msg-{entry.prompt_seq}",
            role=Role.USER,
            content=prompt,
            timestamp=payload.get("timestamp") or utc_now(),
        )
        self._send_message(entry, message)

        if new_title:
            self.client.sync_session(self._session_record(entry))

    def on_tool_use(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = self.ledger.get_or_create(session_id)
        tool_use_id = payload.get("tool_use_id")
        if tool_use_id:
            tool_use_id = str(tool_use_id)
            message_id = f"{session_id}-tool-{tool_use_id}"
            if entry.is_synced(message_id):
                logger.debug("Tool call %s already synced", message_id)
                return
            # A redelivery after a failed or skipped send is not a new call
            if tool_use_id not in entry.counted_tool_ids:
                entry.counted_tool_ids.add(tool_use_id)
                entry.tool_seq += 1
                entry.tool_call_count += 1
        else:
            message_id = None
            entry.tool_seq += 1
            entry.tool_call_count += 1

        if not self.config.sync_tool_calls:
            return

        duration = payload.get("duration_ms", payload.get("durationMs"))
        message = MessageRecord(
            session_id=session_id,
            message_id=message_id or f"{session_id}-tool-{entry.tool_seq}",
            role=Role.ASSISTANT,
            tool_name=payload.get("tool_name") or payload.get("toolName") or "unknown",
            tool_args=payload.get("tool_input", payload.get("args")),
            tool_result=_tool_result(payload),
            duration_ms=duration if isinstance(duration, int) else None,
            timestamp=utc_now(),
        )
        self._send_message(entry, message)

    def on_stop(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = self.ledger.get_or_create(session_id)
        merged = self._refresh(entry, payload)
        sent = self._flush_assistant_messages(entry, merged)

        logger.info(
            "Stop: model=%s, tokens=%d/%d, new messages=%d",
            entry.model, entry.total_input_tokens, entry.output_tokens, sent,
        )
        self.client.sync_session(self._session_record(entry))

    def on_session_end(self, session_id: str, payload: Dict[str, Any]) -> None:
        entry = self.ledger.get(session_id) or LedgerEntry(session_id=session_id)
        # The entry goes away even if anything below fails
        self.ledger.delete(session_id)

        if payload.get("cwd") and not entry.cwd:
            entry.cwd = payload["cwd"]
        merged = self._refresh(entry, payload)

        cost = payload.get("cost_estimate", payload.get("costEstimate"))
        if not isinstance(cost, (int, float)) or isinstance(cost, bool) or not cost:
            cost = calculate_cost(
                entry.model,
                input_tokens=entry.input_tokens,
                output_tokens=entry.output_tokens,
                cache_write_tokens=entry.cache_write_tokens,
                cache_read_tokens=entry.cache_read_tokens,
            )

        session = self._session_record(entry)
        session.end_reason = payload.get("reason") or payload.get("endReason")
        session.cost_estimate = cost
        session.ended_at = utc_now()

        try:
            self._flush_assistant_messages(entry, merged)
        except SyncError as e:
            logger.warning("Could not flush messages for %s: %s", session_id, e)

        logger.info(
            "SessionEnd: model=%s, cost=$%.4f, tokens=%d/%d",
            session.model, cost, entry.total_input_tokens, entry.output_tokens,
        )
        self.client.sync_session(session)
        logger.info(
            "Session synced: %d messages, %d tool calls",
            entry.message_count, entry.tool_call_count,
        )

    # =====================
    # Helpers
    # =====================

    def _refresh(self, entry: LedgerEntry, payload: Dict[str, Any]) -> TranscriptStats:
        """Rescan the transcript and fold it, plus legacy payload fields, into the entry."""
        transcript_path = payload.get("transcript_path")
        if transcript_path:
            entry.transcript_path = transcript_path
        merged = entry.absorb(scan_transcript(entry.transcript_path))
        legacy = _payload_stats(payload)
        entry.absorb(legacy)
        return merged

    def _flush_assistant_messages(self, entry: LedgerEntry, stats: TranscriptStats) -> int:
        """Send assistant replies not yet synced. Returns how many were sent."""
        sent = 0
        for extracted in stats.assistant_messages:
            message_id = f"{entry.session_id}-{extracted.id}"
            if entry.is_synced(message_id):
                continue
            message = MessageRecord(
                session_id=entry.session_id,
                message_id=message_id,
                role=Role.ASSISTANT,
                content=extracted.text,
                thinking_content=extracted.thinking if self.config.sync_thinking else None,
                timestamp=extracted.timestamp,
            )
            self._send_message(entry, message)
            sent += 1
        return sent

    def _send_message(self, entry: LedgerEntry, message: MessageRecord) -> None:
        self.client.sync_message(message)
        entry.mark_synced(message.message_id)

    def _session_record(self, entry: LedgerEntry) -> SessionRecord:
        cwd = entry.cwd
        return SessionRecord(
            session_id=entry.session_id,
            title=entry.title,
            cwd=cwd,
            project_path=cwd,
            project_name=Path(cwd).name if cwd else None,
            git_branch=entry.git_branch,
            model=entry.model,
            permission_mode=entry.permission_mode,
            message_count=entry.message_count,
            tool_call_count=entry.tool_call_count,
            token_usage=TokenUsage(input=entry.total_input_tokens, output=entry.output_tokens),
            started_at=entry.started_at,
        )


def records_from_transcript(
    stats: TranscriptStats,
    session_id: str,
    sync_thinking: bool = False,
) -> Tuple[SessionRecord, List[MessageRecord]]:
    """Build the records for backfilling a whole transcript in one batch.

    Prompt ids follow the same ``<session>-msg-<n>`` numbering as live
    UserPromptSubmit hooks and assistant ids the same ``<session>-<id>``
    form as Stop hooks, so a backfill upserts what hooks already sent.
    The scan drops interrupt markers and command wrappers, which never
    reach UserPromptSubmit, so the numbering stays aligned.
    """
    cwd = stats.cwd
    first_prompt = stats.prompts[0].text if stats.prompts else None
    session = SessionRecord(
        session_id=session_id,
        title=stats.title or derive_title(first_prompt),
        cwd=cwd,
        project_path=cwd,
        project_name=Path(cwd).name if cwd else None,
        git_branch=stats.git_branch,
        model=stats.model,
        message_count=stats.message_count,
        tool_call_count=stats.tool_call_count,
        token_usage=TokenUsage(input=stats.total_input_tokens, output=stats.output_tokens),
        cost_estimate=calculate_cost(
            stats.model,
            input_tokens=stats.input_tokens,
            output_tokens=stats.output_tokens,
            cache_write_tokens=stats.cache_write_tokens,
            cache_read_tokens=stats.cache_read_tokens,
        ),
        started_at=stats.first_timestamp,
        ended_at=stats.last_timestamp,
    )

    messages = [
        MessageRecord(
            session_id=session_id,
            message_id=f"{session_id}-msg-{n}",
            role=Role.USER,
            content=prompt.text,
            timestamp=prompt.timestamp,
        )
        for n, prompt in enumerate(stats.prompts, 1)
    ]
    messages.extend(
        MessageRecord(
            session_id=session_id,
            message_id=f"{session_id}-{reply.id}",
            role=Role.ASSISTANT,
            content=reply.text,
            thinking_content=reply.thinking if sync_thinking else None,
            timestamp=reply.timestamp,
        )
        for reply in stats.assistant_messages
    )
    messages.sort(key=lambda m: m.timestamp or "")
    return session, messages


def _payload_stats(payload: Dict[str, Any]) -> TranscriptStats:
    """Stats carried directly on older payload shapes."""
    usage = payload.get("totalTokenUsage") or payload.get("tokenUsage") or {}
    if not isinstance(usage, dict):
        usage = {}
    return TranscriptStats(
        model=payload.get("model") or None,
        input_tokens=_as_count(usage.get("input")),
        output_tokens=_as_count(usage.get("output")),
        message_count=_as_count(payload.get("messageCount")),
        tool_call_count=_as_count(payload.get("toolCallCount")),
    )


def _as_count(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return 0


def _tool_result(payload: Dict[str, Any]) -> Optional[str]:
    result = payload.get("tool_response")
    if result is None:
        legacy = payload.get("tool_result", payload.get("result"))
        if isinstance(legacy, dict) and ("output" in legacy or "error" in legacy):
            result = legacy.get("output") or legacy.get("error")
        else:
            result = legacy
    if result is None:
        return None
    if not isinstance(result, str):
        result = json.dumps(result, default=str)
    return truncate(result, MAX_TOOL_RESULT_CHARS)


# =============================================================================
# Settings registration
# =============================================================================


def settings_path() -> Path:
    """Claude Code's user settings file."""
    return Path.home() / ".claude" / "settings.json"


def hooks_settings(command: str = COMMAND_NAME) -> Dict[str, Any]:
    """The settings.json block registering every forwarded hook."""
    hooks: Dict[str, Any] = {}
    for event in HookEvent:
        matcher_group: Dict[str, Any] = {
            "hooks": [{"type": "command", "command": f"{command} hook {event.value}"}]
        }
        if event in _MATCHER_EVENTS:
            matcher_group = {"matcher": "*", **matcher_group}
        hooks[event.value] = [matcher_group]
    return {"hooks": hooks}


class HooksAlreadyConfiguredError(Exception):
    """settings.json already has a hooks block and force was not given."""


def _read_settings(path: Path) -> Dict[str, Any]:
    """Parse settings.json, returning {} for a missing or unparseable file."""
    if not path.exists():
        return {}
    try:
        settings = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Could not parse %s, will create a new one: %s", path, e)
        return {}
    return settings if isinstance(settings, dict) else {}


def install_hooks(
    path: Optional[Union[str, Path]] = None,
    force: bool = False,
    command: str = COMMAND_NAME,
) -> Path:
    """Register the sync hooks in Claude Code's settings.

    Other settings are preserved; an existing hooks block is replaced only
    with force.

    Returns:
        Path of the written settings file

    Raises:
        HooksAlreadyConfiguredError: If hooks exist and force is False.
    """
    target = Path(path) if path else settings_path()
    existing = _read_settings(target)
    if existing.get("hooks") and not force:
        raise HooksAlreadyConfiguredError(f"Existing hooks configuration found in {target}")

    settings = {**existing, **hooks_settings(command)}
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(settings, indent=2), encoding="utf-8")
    return target


def validate_hooks(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Check which sync hooks are registered.

    Returns:
        Validation result dict with 'valid', 'settings_path', 'hooks' and
        'warnings' keys
    """
    target = Path(path) if path else settings_path()
    result: Dict[str, Any] = {
        "valid": True,
        "settings_path": str(target),
        "hooks": {},
        "warnings": [],
    }

    if not target.exists():
        result["valid"] = False
        result["warnings"].append(f"{target} does not exist")

    hooks = _read_settings(target).get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}

    for event in HookEvent:
        commands = [
            hook.get("command", "")
            for group in hooks.get(event.value) or []
            if isinstance(group, dict)
            for hook in group.get("hooks") or []
            if isinstance(hook, dict)
        ]
        registered = any(COMMAND_NAME in c for c in commands)
        result["hooks"][event.value] = registered
        if not registered:
            result["valid"] = False
            if commands:
                result["warnings"].append(f"{event.value} has hooks but none run {COMMAND_NAME}")

    return result
