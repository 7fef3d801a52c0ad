"""Runtime configuration and feature flags for SKFill.

``FormConfig`` holds tunables (denylist, cache size, validation limits,
data directory) and can be read from ``SKFILL_*`` environment variables.
``FeatureFlagService`` is an explicitly constructed object with an
``init()``/``destroy()`` lifecycle. It answers with the built-in defaults
whenever it is not initialized, so a session never depends on it being
started.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .normalizer import DEFAULT_DENYLIST

logger = logging.getLogger("skfill.config")

DEFAULT_SKFILL_DIR = Path.home() / ".skfill"

DEFAULT_FEATURE_FLAGS: dict[str, bool] = {
    # Core
    "ENHANCED_WIZARD_MODE": True,
    "PROGRESSIVE_FORM_FILLING": True,
    "SMART_FIELD_DETECTION": True,
    # Signatures
    "SIGNATURE_DRAWING_MODE": True,
    "SIGNATURE_TYPED_MODE": True,
    "SIGNATURE_UPLOAD_MODE": False,
    "MULTI_SIGNATURE_SUPPORT": True,
    # PDF processing
    "ADVANCED_PDF_VALIDATION": True,
    "PDF_FIELD_AUTOCOMPLETE": False,
    "PDF_LAZY_LOADING": True,
    # State and validation
    "FORM_STATE_PERSISTENCE": True,
    "OFFLINE_MODE_SUPPORT": False,
    "ENHANCED_FIELD_VALIDATION": True,
}


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class FormConfig(BaseModel):
    """Tunables shared by extraction, validation and the session store.

    Attributes:
        denylist_names: Exact field names excluded from extraction.
        denylist_prefixes: Name prefixes excluded from extraction.
        validation_cache_size: Max memoized validation results.
        min_phone_digits: Digits a phone number needs to be valid.
        signature_min_length: Minimum length of a signature data URI.
        data_dir: Root directory for persisted sessions.
    """

    denylist_names: list[str] = Field(
        default_factory=lambda: [p for p in DEFAULT_DENYLIST if not p.endswith("*")]
    )
    denylist_prefixes: list[str] = Field(
        default_factory=lambda: [p[:-1] for p in DEFAULT_DENYLIST if p.endswith("*")]
    )
    validation_cache_size: int = Field(256, ge=0)
    min_phone_digits: int = Field(7, ge=1)
    signature_min_length: int = Field(100, ge=0)
    data_dir: Path = DEFAULT_SKFILL_DIR

    @property
    def denylist(self) -> tuple[str, ...]:
        """Glob patterns understood by :func:`skfill.normalizer.normalize_page`."""
        return tuple(self.denylist_names) + tuple(f"{p}*" for p in self.denylist_prefixes)

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> "FormConfig":
        """Build a config from ``SKFILL_*`` environment variables.

        Recognized: ``SKFILL_DENYLIST_NAMES`` and ``SKFILL_DENYLIST_PREFIXES``
        (comma separated), ``SKFILL_VALIDATION_CACHE_SIZE``,
        ``SKFILL_MIN_PHONE_DIGITS``, ``SKFILL_SIGNATURE_MIN_LENGTH`` and
        ``SKFILL_DATA_DIR``. Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        if "SKFILL_DENYLIST_NAMES" in env:
            values["denylist_names"] = _split(env["SKFILL_DENYLIST_NAMES"])
        if "SKFILL_DENYLIST_PREFIXES" in env:
            values["denylist_prefixes"] = _split(env["SKFILL_DENYLIST_PREFIXES"])
        for key in ("validation_cache_size", "min_phone_digits", "signature_min_length"):
            raw = env.get(f"SKFILL_{key.upper()}")
            if raw:
                values[key] = int(raw)
        if env.get("SKFILL_DATA_DIR"):
            values["data_dir"] = Path(env["SKFILL_DATA_DIR"]).expanduser()
        return cls.model_validate(values)


class FeatureFlagService:
    """Feature flags with an explicit lifecycle.

    Args:
        overrides: Flag values that replace the defaults once initialized.
    """

    def __init__(self, overrides: Optional[dict[str, bool]] = None) -> None:
        self._overrides = dict(overrides or {})
        self._flags: Optional[dict[str, bool]] = None

    @property
    def initialized(self) -> bool:
        return self._flags is not None

    def init(self) -> None:
        if self._flags is not None:
            return
        self._flags = {**DEFAULT_FEATURE_FLAGS, **self._overrides}
        logger.info("Feature flags initialized (%d overrides)", len(self._overrides))

    def destroy(self) -> None:
        if self._flags is None:
            return
        self._flags = None
        logger.info("Feature flags destroyed")

    def is_enabled(self, name: str) -> bool:
        """Current value of a flag. Unknown flags are off."""
        flags = self._flags if self._flags is not None else DEFAULT_FEATURE_FLAGS
        return flags.get(name, False)

    def all_flags(self) -> dict[str, bool]:
        return dict(self._flags if self._flags is not None else DEFAULT_FEATURE_FLAGS)
