"""ccsync core - records, transcript scanning, pricing and the session ledger."""

from .ledger import Ledger, LedgerEntry
from .pricing import MODEL_PRICING, calculate_cost, lookup_pricing
from .records import (
    SOURCE,
    HookEvent,
    MessageRecord,
    Role,
    SessionRecord,
    TokenUsage,
    parse_timestamp,
    utc_now,
)
from .transcript import (
    TranscriptMessage,
    TranscriptScanner,
    TranscriptStats,
    is_synthetic_prompt,
    scan_lines,
    scan_transcript,
)

__all__ = [
    "HookEvent",
    "Ledger",
    "LedgerEntry",
    "MODEL_PRICING",
    "MessageRecord",
    "Role",
    "SOURCE",
    "SessionRecord",
    "TokenUsage",
    "TranscriptMessage",
    "TranscriptScanner",
    "TranscriptStats",
    "calculate_cost",
    "is_synthetic_prompt",
    "lookup_pricing",
    "parse_timestamp",
    "scan_lines",
    "scan_transcript",
    "utc_now",
]
