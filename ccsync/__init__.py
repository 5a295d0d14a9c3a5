"""claude-code-sync - Forward Claude Code sessions to the OpenSync dashboard.

Hooks run as short-lived processes; each one reads the event payload,
reconciles it with the session's transcript and local ledger, and sends
session and message records to the dashboard.

Usage:
    from ccsync import HookProcessor, Ledger, SyncClient, load_config
    from ccsync.config import ledger_path

    config = load_config()
    ledger = Ledger.load(ledger_path())
    with SyncClient(config) as client:
        HookProcessor(config, ledger, client).handle("Stop", payload)
    ledger.save()

CLI:
    claude-code-sync login            # Store URL and API key
    claude-code-sync setup            # Register hooks in ~/.claude/settings.json
    claude-code-sync hook Stop        # Handle a hook event from stdin
    claude-code-sync sync FILE.jsonl  # Backfill a transcript
"""

__version__ = "1.0.0"

from .client import SyncClient, SyncConnectionError, SyncError, SyncHTTPError
from .config import Config, ConfigError, load_config
from .core.ledger import Ledger, LedgerEntry
from .core.pricing import MODEL_PRICING, calculate_cost
from .core.records import HookEvent, MessageRecord, Role, SessionRecord, TokenUsage
from .core.transcript import TranscriptStats, scan_transcript
from .hooks import HookProcessor

__all__ = [
    # Records
    "HookEvent",
    "MessageRecord",
    "Role",
    "SessionRecord",
    "TokenUsage",
    # Reconciliation
    "Ledger",
    "LedgerEntry",
    "TranscriptStats",
    "scan_transcript",
    "MODEL_PRICING",
    "calculate_cost",
    # Sync
    "Config",
    "ConfigError",
    "load_config",
    "SyncClient",
    "SyncError",
    "SyncHTTPError",
    "SyncConnectionError",
    "HookProcessor",
]
