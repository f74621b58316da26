"""Configuration constants and lookup for the Workflowy cache."""

import json
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from workflowy_cache.errors import AuthenticationError

APP_NAME = "com.workflowy.local-mcp"

API_BASE_URL = "https://workflowy.com/api/v1"
HTTP_TIMEOUT: float = 30.0

# API token files, checked after the environment and config.json. First file found is used.
API_TOKEN_FILES: list[Path] = [
    Path("~/.config/workflowy-token.txt").expanduser(),
    Path("~/.config/secret/workflowy-token.txt").expanduser(),
]

# The nodes-export endpoint allows one call per minute.
EXPORT_RATE_LIMIT_SECONDS: float = 60.0
# Cache older than this is refreshed before reads.
STALE_THRESHOLD_SECONDS: float = 60 * 60
# A sync lease older than this is considered abandoned.
SYNC_LEASE_TIMEOUT_SECONDS: float = 5 * 60

DEFAULT_DEPTH = 2
MAX_DEPTH = 10
DEFAULT_SEARCH_LIMIT = 5
MAX_SEARCH_LIMIT = 100
CANDIDATE_LIMIT = 200
MIN_SEARCH_SCORE = 0.2
CHILDREN_PREVIEW_SIZE = 5

# Nodes hidden from tree reads; reach them via bookmarks instead.
EXCLUDED_NODE_NAMES: tuple[str, ...] = ("AI Messages",)

AI_INSTRUCTIONS_BOOKMARK = "ai_instructions"

# Parent shortcuts that mean "top level".
TOP_LEVEL_PARENTS: frozenset[str] = frozenset({"None", "home"})
# Remote targets whose node id is not known locally.
TARGET_SHORTCUTS: frozenset[str] = frozenset({"inbox"})


def resolve_data_directory() -> Path:
    """Return the directory holding cache.db and config.json."""
    env = os.environ.get("WORKFLOWY_DATA_DIR")
    if env:
        return Path(env).expanduser()

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / APP_NAME
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / APP_NAME
    return home / ".local" / "share" / APP_NAME


def load_config(data_dir: Path | None = None) -> dict[str, Any]:
    """Load config.json from the data directory, or {} if missing or unreadable."""
    config_path = (data_dir or resolve_data_directory()) / "config.json"
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError):
        logger.debug("Ignoring unreadable config file {}", config_path)
        return {}
    return data if isinstance(data, dict) else {}


def resolve_api_key(data_dir: Path | None = None) -> str:
    """Find the Workflowy API key: environment, then config.json, then token files."""
    env = os.environ.get("WORKFLOWY_API_KEY")
    if env:
        return env.strip()

    config_key = load_config(data_dir).get("apiKey")
    if isinstance(config_key, str) and config_key.strip():
        return config_key.strip()

    for token_path in API_TOKEN_FILES:
        try:
            return token_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            pass

    msg = (
        "Workflowy API key not configured. Set WORKFLOWY_API_KEY, add 'apiKey' to "
        f"config.json, or create one of {[str(p) for p in API_TOKEN_FILES]!r}"
    )
    raise AuthenticationError(msg)


def resolve_reconcile_depth() -> int:
    """How many levels a partial child sync reconciles (default 1)."""
    raw = os.environ.get("WORKFLOWY_RECONCILE_DEPTH", "1")
    try:
        return max(1, int(raw))
    except ValueError:
        logger.warning("Invalid WORKFLOWY_RECONCILE_DEPTH {!r}, using 1", raw)
        return 1


def clamp_depth(depth: int | None) -> int:
    if depth is None:
        return DEFAULT_DEPTH
    return max(1, min(int(depth), MAX_DEPTH))


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_SEARCH_LIMIT
    return max(1, min(int(limit), MAX_SEARCH_LIMIT))


def normalize_parent_id(parent_id: str | None) -> str | None:
    """Map the 'None'/'home' shortcuts to a top-level parent (None)."""
    if parent_id is None or parent_id in TOP_LEVEL_PARENTS:
        return None
    return parent_id
