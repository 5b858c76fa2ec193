"""Effect and power definition lookup.

Definitions ship as JSON lists bundled with the package. Effect rows
edited through the admin API are overlaid on top with
``register_effects``; every worker refreshes that overlay once it is
older than the configured TTL.
"""

import json
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[2] / 'data'
DEFAULT_EFFECTS_PATH = DATA_DIR / 'effects.json'
DEFAULT_POWERS_PATH = DATA_DIR / 'powers.json'

_bundled: Dict[str, dict] = {}
_overrides: Dict[str, dict] = {}
_powers: Dict[str, dict] = {}
_overrides_synced_at: Optional[float] = None


def _read_definitions(source: Path) -> Dict[str, dict]:
    with open(source, encoding='utf-8') as fh:
        data = json.load(fh)
    if not isinstance(data, list):
        raise ValueError(f"Definition file {source} must contain a JSON list")
    return {entry['id']: entry for entry in data if isinstance(entry, dict) and entry.get('id')}


def load_effects(path=None) -> int:
    """(Re)load the bundled definitions from ``path`` and drop overrides."""
    global _bundled, _overrides, _overrides_synced_at
    source = Path(path) if path else DEFAULT_EFFECTS_PATH
    _bundled = _read_definitions(source)
    _overrides = {}
    _overrides_synced_at = None
    logger.info(f"[catalog] loaded {len(_bundled)} effect definitions from {source}")
    return len(_bundled)


def load_powers(path=None) -> int:
    global _powers
    source = Path(path) if path else DEFAULT_POWERS_PATH
    _powers = _read_definitions(source)
    logger.info(f"[catalog] loaded {len(_powers)} power definitions from {source}")
    return len(_powers)


def register_effects(definitions: Iterable[dict], replace: bool = False) -> None:
    """Overlay ``definitions``; with ``replace`` the new set swaps in whole."""
    global _overrides, _overrides_synced_at
    merged = {} if replace else dict(_overrides)
    for entry in definitions:
        if isinstance(entry, dict) and entry.get('id'):
            merged[entry['id']] = entry
    _overrides = merged
    if replace:
        _overrides_synced_at = time.monotonic()


def unregister_effect(effect_id: str) -> None:
    global _overrides
    remaining = dict(_overrides)
    remaining.pop(effect_id, None)
    _overrides = remaining


def overrides_stale(ttl_sec) -> bool:
    """True when the stored overlay was never loaded or is older than ``ttl_sec``."""
    if ttl_sec is None or ttl_sec < 0:
        return False
    if _overrides_synced_at is None:
        return True
    return time.monotonic() - _overrides_synced_at >= ttl_sec


def get_effect_definition(effect_id: str) -> Optional[dict]:
    if not effect_id:
        return None
    return _overrides.get(effect_id) or _bundled.get(effect_id)


def get_power_definition(power_id: str) -> Optional[dict]:
    if not power_id:
        return None
    return _powers.get(power_id)


def all_effects() -> Dict[str, dict]:
    merged = dict(_bundled)
    merged.update(_overrides)
    return merged


def reset() -> None:
    global _bundled, _overrides, _powers, _overrides_synced_at
    _bundled = {}
    _overrides = {}
    _powers = {}
    _overrides_synced_at = None
