"""Credentials and settings for the sync plugin.

Configuration comes from environment variables when both the URL and key
are set there, otherwise from ``~/.config/claude-code-sync/config.json``.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "CLAUDE_SYNC_CONFIG_DIR"
CONFIG_FILENAME = "config.json"
LEDGER_FILENAME = "sessions.json"

API_KEY_PREFIX = "osk_"

# Config file key -> Config attribute
SETTABLE_KEYS = {
    "autoSync": "auto_sync",
    "syncToolCalls": "sync_tool_calls",
    "syncThinking": "sync_thinking",
}


class ConfigError(ValueError):
    """Raised for missing or invalid credentials."""


@dataclass
class Config:
    """Connection settings and sync toggles."""
    convex_url: str
    api_key: str
    auto_sync: bool = True
    sync_tool_calls: bool = True
    sync_thinking: bool = False

    @property
    def site_url(self) -> str:
        """Base URL for HTTP actions (always the .convex.site host)."""
        return normalize_convex_url(self.convex_url).rstrip("/")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "convexUrl": self.convex_url,
            "apiKey": self.api_key,
            "autoSync": self.auto_sync,
            "syncToolCalls": self.sync_tool_calls,
            "syncThinking": self.sync_thinking,
        }

    def to_display_dict(self) -> Dict[str, Any]:
        """Settings with the API key masked."""
        return {
            "configured": True,
            "convexUrl": self.convex_url,
            "apiKey": mask_api_key(self.api_key),
            "autoSync": self.auto_sync,
            "syncToolCalls": self.sync_tool_calls,
            "syncThinking": self.sync_thinking,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Create Config from the config file's dictionary.

        Raises:
            ConfigError: If the URL or API key is missing.
        """
        if not isinstance(d, dict):
            raise ConfigError(f"Expected dict, got {type(d).__name__}")
        convex_url = d.get("convexUrl")
        api_key = d.get("apiKey")
        if not convex_url or not api_key:
            raise ConfigError("Config is missing convexUrl or apiKey")
        return cls(
            convex_url=normalize_convex_url(convex_url),
            api_key=api_key,
            auto_sync=d.get("autoSync") is not False,
            sync_tool_calls=d.get("syncToolCalls") is not False,
            sync_thinking=d.get("syncThinking") is True,
        )


def config_dir() -> Path:
    """Directory holding the config and ledger files."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "claude-code-sync"


def config_path() -> Path:
    return config_dir() / CONFIG_FILENAME


def ledger_path() -> Path:
    return config_dir() / LEDGER_FILENAME


def normalize_convex_url(url: str) -> str:
    """Convert a .convex.cloud deployment URL to its .convex.site HTTP host."""
    return url.strip().replace(".convex.cloud", ".convex.site")


def load_config() -> Optional[Config]:
    """Load configuration from the environment or the config file.

    Returns:
        Config, or None if not configured (or the file is unreadable)
    """
    env_url = os.environ.get("CLAUDE_SYNC_CONVEX_URL")
    env_key = os.environ.get("CLAUDE_SYNC_API_KEY")
    if env_url and env_key:
        return Config(
            convex_url=normalize_convex_url(env_url),
            api_key=env_key,
            auto_sync=os.environ.get("CLAUDE_SYNC_AUTO_SYNC") != "false",
            sync_tool_calls=os.environ.get("CLAUDE_SYNC_TOOL_CALLS") != "false",
            sync_thinking=os.environ.get("CLAUDE_SYNC_THINKING") == "true",
        )

    path = config_path()
    if not path.exists():
        return None

    try:
        return Config.from_dict(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.error("Error loading config %s: %s", path, e)
        return None


def save_config(config: Config) -> Path:
    """Write configuration to the config file.

    Returns:
        Path of the written file
    """
    path = config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
    try:
        path.chmod(0o600)
    except OSError:
        logger.debug("Could not restrict permissions on %s", path)
    return path


def clear_config() -> bool:
    """Delete the config file. Returns True if a file was removed."""
    path = config_path()
    if not path.exists():
        return False
    path.unlink()
    return True


def validate_convex_url(url: str) -> str:
    """Check a deployment URL entered at login.

    Raises:
        ConfigError: If empty or not a Convex URL.
    """
    url = (url or "").strip()
    if not url:
        raise ConfigError("Convex URL is required")
    if "convex.cloud" not in url and "convex.site" not in url:
        raise ConfigError("Invalid Convex URL. Must contain convex.cloud or convex.site")
    return url


def validate_api_key(api_key: str) -> str:
    """Check an API key entered at login.

    Raises:
        ConfigError: If empty or missing the osk_ prefix.
    """
    api_key = (api_key or "").strip()
    if not api_key:
        raise ConfigError("API Key is required")
    if not api_key.startswith(API_KEY_PREFIX):
        raise ConfigError(f"Invalid API Key. Must start with {API_KEY_PREFIX}")
    return api_key


def mask_api_key(key: str) -> str:
    if len(key) <= 8:
        return "****"
    return key[:4] + "****" + key[-4:]


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")
