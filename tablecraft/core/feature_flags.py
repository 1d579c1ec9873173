# tablecraft/core/feature_flags.py
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)

VALID_MODES = ("legacy", "hybrid", "refactored")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _parse_bool(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    value = value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _load_settings() -> Optional[Any]:
    """Return the settings object, or None when the settings layer cannot be built"""
    try:
        from tablecraft.core.config import get_settings
        return get_settings()
    except Exception as e:
        logger.warning(f"Settings unavailable, using environment fallback: {str(e)}")
        return None


def mode(settings: Optional[Any] = None) -> str:
    """Datatables execution mode: legacy, hybrid or refactored"""
    settings = settings if settings is not None else _load_settings()
    if settings is not None:
        value = str(getattr(settings, "DATATABLES_MODE", "legacy") or "legacy").lower()
    else:
        value = (os.getenv("TABLECRAFT_DT_MODE") or "legacy").lower()

    if value not in VALID_MODES:
        logger.warning(f"Unknown datatables mode '{value}', falling back to legacy")
        return "legacy"
    return value


def pipeline_enabled(settings: Optional[Any] = None) -> bool:
    """Whether the modular pipeline is switched on. Default off."""
    settings = settings if settings is not None else _load_settings()
    if settings is not None:
        return bool(getattr(settings, "DATATABLES_PIPELINE_ENABLED", False))
    return _parse_bool(os.getenv("TABLECRAFT_DT_ENABLED")) or False


def effective_mode(settings: Optional[Any] = None) -> str:
    """Mode after applying the pipeline switch: an enabled pipeline promotes legacy to refactored"""
    current = mode(settings)
    if current == "legacy" and pipeline_enabled(settings):
        return "refactored"
    return current


def inspector_enabled(settings: Optional[Any] = None) -> bool:
    """
    Inspector is on when explicitly enabled; otherwise auto-on in local/testing
    and in hybrid mode, off in production.
    """
    settings = settings if settings is not None else _load_settings()
    if settings is not None:
        explicit = getattr(settings, "INSPECTOR_ENABLED", None)
        if explicit is not None:
            return bool(explicit)
        return bool(settings.is_local) or mode(settings) == "hybrid"

    explicit = _parse_bool(os.getenv("TABLECRAFT_INSPECTOR_ENABLED"))
    if explicit is not None:
        return explicit
    app_env = (os.getenv("APP_ENV") or "production").lower()
    return app_env in ("local", "testing") or mode(None) == "hybrid"


def inspector_option(key: str, default: Any = None, settings: Optional[Any] = None) -> Any:
    """Read an INSPECTOR_<KEY> option from settings, then TABLECRAFT_INSPECTOR_<KEY>"""
    settings = settings if settings is not None else _load_settings()
    attr = f"INSPECTOR_{key.upper()}"
    if settings is not None and hasattr(settings, attr):
        value = getattr(settings, attr)
        return default if value is None else value

    raw = os.getenv(f"TABLECRAFT_{attr}")
    if raw is None:
        return default
    if isinstance(default, bool):
        parsed = _parse_bool(raw)
        return default if parsed is None else parsed
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return default
    return raw
