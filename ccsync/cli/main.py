"""claude-code-sync CLI - Sync Claude Code sessions to the OpenSync dashboard."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from .. import __version__
from ..client import SyncClient, SyncError
from ..config import (
    SETTABLE_KEYS,
    Config,
    ConfigError,
    clear_config,
    config_path,
    ledger_path,
    load_config,
    mask_api_key,
    parse_bool,
    save_config,
    validate_api_key,
    validate_convex_url,
)
from ..core.ledger import Ledger
from ..core.transcript import scan_transcript
from ..hooks import (
    HookProcessor,
    HooksAlreadyConfiguredError,
    hooks_settings,
    install_hooks,
    records_from_transcript,
    validate_hooks,
)

logger = logging.getLogger(__name__)

LOG_PREFIX = "[claude-code-sync]"


class _ClickHandler(logging.Handler):
    """Logging handler writing through click.echo to the current stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def _configure_logging(verbose: bool) -> None:
    package_logger = logging.getLogger("ccsync")
    for handler in list(package_logger.handlers):
        if isinstance(handler, _ClickHandler):
            package_logger.removeHandler(handler)
    handler = _ClickHandler()
    handler.setFormatter(logging.Formatter(f"{LOG_PREFIX} %(message)s"))
    package_logger.addHandler(handler)
    package_logger.propagate = False
    debug = verbose or os.environ.get("CLAUDE_SYNC_DEBUG") == "1"
    package_logger.setLevel(logging.DEBUG if debug else logging.WARNING)


def _fail(message: str, hint: Optional[str] = None) -> None:
    """Print an error (and optional hint) to stderr and exit 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    if hint:
        click.echo(f"   {hint}", err=True)
    sys.exit(1)


def _header(title: str) -> None:
    click.echo()
    click.echo(click.style(f"  {title}", fg="cyan", bold=True))
    click.echo()


def _require_config() -> Config:
    config = load_config()
    if config is None:
        _fail("Not configured.", hint="Run 'claude-code-sync login' to set up.")
    return config


@click.group()
@click.version_option(version=__version__, prog_name="claude-code-sync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging on stderr")
def cli(verbose: bool):
    """Sync Claude Code sessions to the OpenSync dashboard.

    Run 'claude-code-sync login' once, then 'claude-code-sync setup' to
    register the hooks.
    """
    _configure_logging(verbose)


@cli.command()
@click.option("--url", "convex_url", default=None, help="Convex deployment URL")
@click.option("--api-key", default=None, help="API key (osk_...)")
def login(convex_url: Optional[str], api_key: Optional[str]):
    """Configure Convex URL and API Key.

    Examples:
        claude-code-sync login
        claude-code-sync login --url https://my-app.convex.cloud --api-key osk_...
    """
    _header("Claude Code Sync - Login")
    click.echo("Get your API key from your OpenSync dashboard:")
    click.echo("  1. Go to Settings")
    click.echo("  2. Click 'Generate API Key'")
    click.echo("  3. Copy the key (starts with osk_)")
    click.echo()

    try:
        if convex_url is None:
            convex_url = click.prompt(
                "Convex URL (e.g., https://your-project.convex.cloud)",
                default="",
                show_default=False,
            )
        convex_url = validate_convex_url(convex_url)

        if api_key is None:
            api_key = click.prompt("API Key (osk_...)", default="", show_default=False, hide_input=True)
        api_key = validate_api_key(api_key)
    except ConfigError as e:
        _fail(str(e))

    config = Config(convex_url=convex_url, api_key=api_key)

    click.echo()
    click.echo("Testing connection...")
    with SyncClient(config) as client:
        connected = client.test_connection()
    if not connected:
        _fail("Could not connect to Convex backend", hint="Check your URL and try again")

    path = save_config(config)
    click.echo()
    click.echo(click.style("Configuration saved!", fg="green"))
    click.echo(f"   URL: {convex_url}")
    click.echo(f"   Key: {mask_api_key(api_key)}")
    click.echo(f"   File: {path}")
    click.echo()
    click.echo("Run 'claude-code-sync setup' to register the Claude Code hooks.")


@cli.command()
def logout():
    """Clear stored credentials."""
    if clear_config():
        click.echo(click.style("Credentials cleared", fg="green"))
    else:
        click.echo("No stored credentials.")


@cli.command()
def status():
    """Show configuration and test the connection."""
    _header("Claude Code Sync - Status")
    config = _require_config()

    click.echo("Configuration:")
    click.echo(f"  Convex URL: {config.convex_url}")
    click.echo(f"  API Key:    {mask_api_key(config.api_key)}")
    click.echo(f"  Auto Sync:  {'enabled' if config.auto_sync else 'disabled'}")
    click.echo(f"  Tool Calls: {'enabled' if config.sync_tool_calls else 'disabled'}")
    click.echo(f"  Thinking:   {'enabled' if config.sync_thinking else 'disabled'}")

    click.echo()
    click.echo("Testing connection...")
    with SyncClient(config) as client:
        connected = client.test_connection()
    if not connected:
        _fail("Could not connect to Convex backend")
    click.echo(click.style("Connected to Convex backend", fg="green"))


@cli.command("config")
@click.option("--format", "output_format", type=click.Choice(["text", "json", "yaml"]), default="text", help="Output format")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON (same as --format json)")
def show_config(output_format: str, as_json: bool):
    """Show current configuration.

    Examples:
        claude-code-sync config
        claude-code-sync config --json
        claude-code-sync config --format yaml
    """
    if as_json:
        output_format = "json"

    config = load_config()
    data = config.to_display_dict() if config else {"configured": False}

    if output_format == "json":
        click.echo(json.dumps(data, indent=2))
        return
    if output_format == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), nl=False)
        return

    if config is None:
        click.echo("Not configured. Run 'claude-code-sync login' to set up.")
        return

    _header("Current Configuration")
    click.echo(f"Convex URL:  {config.convex_url}")
    click.echo(f"API Key:     {mask_api_key(config.api_key)}")
    click.echo(f"Auto Sync:   {str(config.auto_sync).lower()}")
    click.echo(f"Tool Calls:  {str(config.sync_tool_calls).lower()}")
    click.echo(f"Thinking:    {str(config.sync_thinking).lower()}")
    click.echo()
    click.echo(f"Config file: {config_path()}")


@cli.command("set")
@click.argument("key")
@click.argument("value")
def set_value(key: str, value: str):
    """Set a configuration value.

    Valid keys: autoSync, syncToolCalls, syncThinking

    Examples:
        claude-code-sync set syncToolCalls false
        claude-code-sync set syncThinking true
    """
    config = load_config()
    if config is None:
        _fail("Not configured. Run 'claude-code-sync login' first.")

    if key not in SETTABLE_KEYS:
        _fail(f"Invalid key. Valid keys: {', '.join(SETTABLE_KEYS)}")

    bool_value = parse_bool(value)
    setattr(config, SETTABLE_KEYS[key], bool_value)
    save_config(config)
    click.echo(f"Set {key} = {str(bool_value).lower()}")


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite existing hooks configuration")
def setup(force: bool):
    """Add hooks to Claude Code settings (~/.claude/settings.json)."""
    _header("Claude Code Sync - Setup")

    if load_config() is None:
        click.echo(click.style("Warning: Plugin not configured yet.", fg="yellow"))
        click.echo("   Run 'claude-code-sync login' first to set up credentials.")
        click.echo()

    try:
        path = install_hooks(force=force)
    except HooksAlreadyConfiguredError:
        click.echo(click.style("Existing hooks configuration found.", fg="yellow"))
        click.echo("   Use --force to overwrite, or manually merge the hooks.")
        click.echo()
        click.echo("To manually add, include these hooks in your settings.json:")
        click.echo(json.dumps(hooks_settings(), indent=2))
        sys.exit(1)
    except OSError as e:
        _fail(f"Error writing settings: {e}")

    click.echo(click.style("Claude Code hooks configured!", fg="green"))
    click.echo(f"   Settings file: {path}")
    click.echo()
    click.echo("Setup complete. Sessions will sync automatically.")


@cli.command()
def verify():
    """Verify credentials and Claude Code configuration."""
    _header("OpenSync Setup Verification")

    config = load_config()
    if config:
        click.echo("Credentials: " + click.style("OK", fg="green"))
        click.echo(f"   Convex URL: {config.convex_url}")
        click.echo(f"   API Key: {mask_api_key(config.api_key)}")
    else:
        click.echo("Credentials: " + click.style("NOT CONFIGURED", fg="red"))
        click.echo("   Run 'claude-code-sync login' to set up")

    validation = validate_hooks()
    click.echo()
    if validation["valid"]:
        click.echo("Claude Code Config: " + click.style("OK", fg="green"))
        click.echo(f"   Config file: {validation['settings_path']}")
    else:
        click.echo("Claude Code Config: " + click.style("NOT CONFIGURED", fg="red"))
        for event_name, registered in validation["hooks"].items():
            if not registered:
                click.echo(f"   {event_name}: " + click.style("missing", fg="red"))
        click.echo("   Run 'claude-code-sync setup' to configure hooks")
    for warning in validation["warnings"]:
        click.echo(f"   - {warning}")

    if config:
        click.echo()
        click.echo("Testing connection...")
        with SyncClient(config) as client:
            connected = client.test_connection()
        if not connected:
            click.echo("Connection: " + click.style("FAILED", fg="red"))
            sys.exit(1)
        click.echo("Connection: " + click.style("OK", fg="green"))

    click.echo()
    if config and validation["valid"]:
        click.echo(click.style("Ready! Start Claude Code and sessions will sync automatically.", fg="green"))
    else:
        sys.exit(1)


@cli.command()
@click.argument("event", required=False)
def hook(event: Optional[str]):
    """Handle a Claude Code hook event (reads the payload from stdin).

    Always exits 0 so sync problems never block Claude Code.

    Examples:
        claude-code-sync hook SessionStart
        claude-code-sync hook Stop
    """
    config = load_config()
    if config is None or not config.auto_sync:
        return

    raw = sys.stdin.read()
    if not raw.strip():
        return

    try:
        payload = json.loads(raw)
    except ValueError as e:
        logger.error("Invalid hook payload: %s", e)
        return
    if not isinstance(payload, dict):
        logger.error("Invalid hook payload: expected a JSON object")
        return

    event_name = event or payload.get("hook_event_name")
    if not event_name:
        logger.error("No hook event given")
        return

    ledger = Ledger.load(ledger_path())
    try:
        with SyncClient(config) as client:
            HookProcessor(config, ledger, client).handle(event_name, payload)
    except SyncError as e:
        logger.error("Error: %s", e)
    except Exception as e:
        logger.error("Unexpected error handling %s: %s", event_name, e)
    finally:
        try:
            ledger.save()
        except OSError as e:
            logger.error("Could not save session state: %s", e)


@cli.command()
@click.argument("transcript", type=click.Path(exists=True, dir_okay=False))
@click.option("--session-id", "-s", default=None, help="Session id (default: transcript file name)")
@click.option("--dry-run", is_flag=True, help="Show what would be sent")
def sync(transcript: str, session_id: Optional[str], dry_run: bool):
    """Backfill a whole transcript in one batch request.

    Examples:
        claude-code-sync sync ~/.claude/projects/-my-repo/abc123.jsonl
        claude-code-sync sync abc123.jsonl --dry-run
    """
    config = None if dry_run else _require_config()

    stats = scan_transcript(transcript)
    session_id = session_id or Path(transcript).stem
    session, messages = records_from_transcript(
        stats, session_id, sync_thinking=bool(config and config.sync_thinking)
    )

    click.echo(f"Session: {session_id}")
    click.echo(f"  Title: {session.title or '-'}")
    click.echo(f"  Model: {session.model or 'unknown'}")
    click.echo(f"  Messages: {len(messages)} ({stats.message_count} counted, {stats.tool_call_count} tool calls)")
    click.echo(f"  Tokens: {stats.total_input_tokens:,} in / {stats.output_tokens:,} out")
    click.echo(f"  Est. Cost: ${session.cost_estimate:.4f}")
    if stats.malformed_lines:
        click.echo(click.style(f"  Skipped {stats.malformed_lines} malformed lines", fg="yellow"))

    if dry_run:
        click.echo()
        click.echo("(dry run - nothing sent)")
        return

    try:
        with SyncClient(config) as client:
            client.sync_batch([session], messages)
    except SyncError as e:
        _fail(str(e))
    click.echo(click.style(f"Synced {len(messages)} messages.", fg="green"))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def sessions(as_json: bool):
    """List sessions with local sync state (not yet ended)."""
    ledger = Ledger.load(ledger_path())
    entries = ledger.sessions()

    if as_json:
        click.echo(json.dumps([e.to_dict() for e in entries], indent=2))
        return

    if not entries:
        click.echo("No open sessions.")
        return

    click.echo(f"Open sessions ({len(entries)}):")
    for entry in entries:
        title = entry.title or "(untitled)"
        display_title = title[:50] + "..." if len(title) > 50 else title
        click.echo(f"  {entry.session_id}: {display_title}")
        click.echo(
            f"    model: {entry.model or 'unknown'}, "
            f"tokens: {entry.total_input_tokens:,}/{entry.output_tokens:,}, "
            f"synced messages: {len(entry.synced_message_ids)}"
        )


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
