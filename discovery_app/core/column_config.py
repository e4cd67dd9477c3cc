"""Load table column sets from YAML (with fallbacks)."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .config import CYCLE_DETAIL_COLUMNS, QUARTER_DETAIL_COLUMNS, TRANSITION_COLUMNS

logger = logging.getLogger(__name__)

_CACHE: dict[str, list[str]] | None = None


def _defaults() -> dict[str, list[str]]:
    return {
        "cycle_detail": list(CYCLE_DETAIL_COLUMNS),
        "quarter_detail": list(QUARTER_DETAIL_COLUMNS),
        "transitions": list(TRANSITION_COLUMNS),
    }


def load_column_sets(base_path: str | Path | None = None, *, reload: bool = False) -> dict[str, list[str]]:
    """Column sets from ``columns.yaml`` under ``base_path``.

    Missing sets (or a missing/unreadable file) fall back to the built-in
    defaults from ``config``.
    """
    global _CACHE
    if _CACHE is not None and not reload:
        return _CACHE
    base = Path(base_path or Path(__file__).resolve().parent.parent)
    yaml_path = base / "columns.yaml"
    sets = _defaults()
    if yaml_path.exists():
        try:
            data = yaml.safe_load(yaml_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable %s: %s", yaml_path, exc)
            data = {}
        user_sets = data.get("sets") if isinstance(data, dict) else None
        for name, cols in (user_sets if isinstance(user_sets, dict) else {}).items():
            if isinstance(cols, list) and cols:
                sets[name] = [str(c) for c in cols]
    _CACHE = sets
    return _CACHE


def get_columns(set_name: str) -> list[str]:
    return load_column_sets().get(set_name, [])
