"""Configuration utilities.

Provides:
- `DispatchConfig` — tunable parameters of the dispatch engine
- `load_dispatch_config()` — loads `dispatch_config.yaml` (YAML, or JSON by suffix)
  and applies `DISPATCH_*` environment overrides

Defaults live on the dataclass so a missing file still yields a working engine.
"""

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging
import os

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "DISPATCH_"


@dataclass(frozen=True)
class DispatchConfig:
    """Dispatch engine parameters."""

    grace_period_seconds: float = 30.0
    batch_window_seconds: float = 30.0
    proximity_radius_km: float = 3.0
    two_wheeler_max_weight_kg: float = 0.4
    tick_interval_seconds: float = 10.0
    store_timeout_seconds: float = 5.0
    scheduler_enabled: bool = True

    def __post_init__(self):
        for name in (
            "grace_period_seconds",
            "batch_window_seconds",
            "proximity_radius_km",
            "two_wheeler_max_weight_kg",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        for name in ("tick_interval_seconds", "store_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")


def _default_config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config" / "dispatch_config.yaml"


def _read_config_file(cfg_path: Path) -> Dict[str, Any]:
    text = cfg_path.read_text(encoding="utf-8")
    if cfg_path.suffix == ".json":
        data = json.loads(text) or {}
    else:
        data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Dispatch config at {cfg_path} must be a mapping")

    # Accept both a top-level `dispatch:` section and a flat mapping
    section = data.get("dispatch", data)
    return section if isinstance(section, dict) else {}


def _coerce(raw: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    return float(raw)


def load_dispatch_config(path: Optional[str] = None) -> DispatchConfig:
    """Load dispatch configuration.

    Precedence (highest -> lowest):
      1) environment variables `DISPATCH_<FIELD>` (after `load_dotenv()`)
      2) the config file (`path`, or `backend/config/dispatch_config.yaml`)
      3) `DispatchConfig` defaults

    Raises:
        ValueError: a value cannot be coerced or violates its bounds
    """
    load_dotenv()

    cfg_path = Path(path) if path else _default_config_path()
    file_values: Dict[str, Any] = {}
    if cfg_path.exists():
        file_values = _read_config_file(cfg_path)
    else:
        logger.debug(f"Dispatch config not found at {cfg_path}, using defaults")

    defaults = DispatchConfig()
    overrides: Dict[str, Any] = {}
    for f in fields(DispatchConfig):
        default = getattr(defaults, f.name)
        env_value = os.getenv(f"{ENV_PREFIX}{f.name.upper()}")
        if env_value is not None:
            overrides[f.name] = _coerce(env_value, default)
        elif f.name in file_values:
            overrides[f.name] = _coerce(file_values[f.name], default)

    unknown = set(file_values) - {f.name for f in fields(DispatchConfig)}
    if unknown:
        logger.warning(f"Ignoring unknown dispatch config keys: {sorted(unknown)}")

    config = replace(defaults, **overrides)
    logger.info(
        f"Dispatch config loaded: grace={config.grace_period_seconds}s "
        f"radius={config.proximity_radius_km}km tick={config.tick_interval_seconds}s"
    )
    return config
