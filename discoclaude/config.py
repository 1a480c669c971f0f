"""Global configuration management.

Config is loaded at module import time and available globally via:
    from discoclaude.config import config

Components receive the fields they need at construction time; only the
daemon reads the global instance.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv

from discoclaude.git.repo_helpers import ResolutionStrategy

# Project root (relative to this file)
_project_root = Path(__file__).parent.parent

# Load .env (allow override for tests)
_env_path = os.getenv("DISCOCLAUDE_ENV_PATH")
_dotenv_path = Path(_env_path).expanduser() if _env_path else _project_root / ".env"
if not _dotenv_path.is_absolute():
    _dotenv_path = (_project_root / _dotenv_path).resolve()

load_dotenv(_dotenv_path)


@dataclass
class DiscordConfig:
    token: str
    application_id: int | None
    guild_id: int | None
    channel_id: int | None
    category_name: str
    mention_user_id: str | None


@dataclass
class ClaudeConfig:
    """Assistant CLI invocation and progress rendering settings.

    Attributes:
        command: Executable used to run the assistant CLI
        skip_types: Lower-cased "type" or "type:subtype" tags dropped before rendering
        fallback_model: Model retried once when the CLI exits with code 1
        permission_mode: Value passed to --permission-mode (empty to omit)
    """

    command: str
    skip_types: frozenset[str]
    fallback_model: str | None
    permission_mode: str


@dataclass
class GitConfig:
    force_bare: bool
    resolution_strategy: ResolutionStrategy = ResolutionStrategy.LEGACY


@dataclass
class Config:
    discord: DiscordConfig
    claude: ClaudeConfig
    git: GitConfig
    work_dir: str
    worktree_bot: bool


# Default configuration values (single source of truth)
DEFAULT_CONFIG: dict[str, object] = {
    "work_dir": "",
    "worktree_bot": False,
    "discord": {
        "token": "",
        "application_id": None,
        "guild_id": None,
        "channel_id": None,
        "category_name": "",
        "mention_user_id": None,
    },
    "claude": {
        "command": "claude",
        "skip_types": [],
        "fallback_model": "claude-sonnet-4-20250514",
        "permission_mode": "bypassPermissions",
    },
    "git": {
        "force_bare": False,
        "resolution_strategy": ResolutionStrategy.LEGACY.value,
    },
}

# env var -> (section, key); section None means top level
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str]] = {
    "DISCORD_BOT_TOKEN": ("discord", "token"),
    "DISCORD_APPLICATION_ID": ("discord", "application_id"),
    "DISCORD_GUILD_ID": ("discord", "guild_id"),
    "DISCORD_CHANNEL_ID": ("discord", "channel_id"),
    "CATEGORY_NAME": ("discord", "category_name"),
    "DEFAULT_MENTION_USER_ID": ("discord", "mention_user_id"),
    "CLAUDE_SKIP_MESSAGE_TYPES": ("claude", "skip_types"),
    "CLAUDE_FALLBACK_MODEL": ("claude", "fallback_model"),
    "GIT_BARE_REPO": ("git", "force_bare"),
    "GIT_RESOLUTION_STRATEGY": ("git", "resolution_strategy"),
    "WORK_DIR": (None, "work_dir"),
    "WORKTREE_BOT": (None, "worktree_bot"),
}


def expand_env_vars(value: object) -> object:
    """Recursively replace ${VAR} patterns with environment variable values."""
    if isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item) for item in value]
    if isinstance(value, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, value)
    return value


def _deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    """Deep merge override dict into base dict.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overrides from user config

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)  # type: ignore[arg-type]
        else:
            result[key] = value
    return result


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def parse_skip_types(value: object) -> frozenset[str]:
    """Parse a comma-separated string (or list) of skip tags, case-insensitively."""
    if isinstance(value, str):
        items: list[object] = list(value.split(","))
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
    else:
        items = []
    return frozenset(str(item).strip().lower() for item in items if str(item).strip())


def _parse_optional_int(value: object) -> int | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    return None


def parse_resolution_strategy(value: object) -> ResolutionStrategy:
    text = str(value or ResolutionStrategy.LEGACY.value).strip().lower()
    try:
        return ResolutionStrategy(text)
    except ValueError as exc:
        choices = ", ".join(s.value for s in ResolutionStrategy)
        raise ValueError(f"Invalid git resolution strategy {value!r} (expected one of: {choices})") from exc


def _section(raw: dict[str, object], name: str) -> dict[str, object]:
    value = raw.get(name)
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _apply_env_overrides(raw: dict[str, object], env: Mapping[str, str]) -> dict[str, object]:
    result = _deep_merge(raw, {})
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        env_value = env.get(env_name)
        if env_value is None or env_value == "":
            continue
        if section is None:
            result[key] = env_value
            continue
        section_raw = dict(result.get(section) or {})  # type: ignore[call-overload]
        section_raw[key] = env_value
        result[section] = section_raw
    return result


def _build_config(raw: dict[str, object]) -> Config:
    """Build typed Config from raw dict with proper type conversion."""
    discord_raw = _section(raw, "discord")
    claude_raw = _section(raw, "claude")
    git_raw = _section(raw, "git")

    fallback_model = claude_raw.get("fallback_model")
    mention_user_id = discord_raw.get("mention_user_id")

    return Config(
        discord=DiscordConfig(
            token=str(discord_raw.get("token") or "").strip(),
            application_id=_parse_optional_int(discord_raw.get("application_id")),
            guild_id=_parse_optional_int(discord_raw.get("guild_id")),
            channel_id=_parse_optional_int(discord_raw.get("channel_id")),
            category_name=str(discord_raw.get("category_name") or ""),
            mention_user_id=str(mention_user_id) if mention_user_id else None,
        ),
        claude=ClaudeConfig(
            command=str(claude_raw.get("command") or "claude"),
            skip_types=parse_skip_types(claude_raw.get("skip_types")),
            fallback_model=str(fallback_model) if fallback_model else None,
            permission_mode=str(claude_raw.get("permission_mode") or ""),
        ),
        git=GitConfig(
            force_bare=parse_bool(git_raw.get("force_bare")),
            resolution_strategy=parse_resolution_strategy(git_raw.get("resolution_strategy")),
        ),
        work_dir=str(raw.get("work_dir") or os.getcwd()),
        worktree_bot=parse_bool(raw.get("worktree_bot")),
    )


def load_config(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Config:
    """Load config from YAML (optional), then apply environment overrides.

    Args:
        config_path: YAML file to read; defaults to DISCOCLAUDE_CONFIG_PATH or config.yml
        env: Environment mapping (defaults to os.environ)

    Returns:
        Typed Config
    """
    env = os.environ if env is None else env
    if config_path is None:
        configured = env.get("DISCOCLAUDE_CONFIG_PATH")
        config_path = Path(configured).expanduser() if configured else _project_root / "config.yml"
    if not config_path.is_absolute():
        config_path = (_project_root / config_path).resolve()

    user_config: dict[str, object] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        user_config = expand_env_vars(loaded or {})  # type: ignore[assignment]

    merged = _deep_merge(DEFAULT_CONFIG, user_config)
    merged = _apply_env_overrides(merged, env)
    return _build_config(merged)


config = load_config()
