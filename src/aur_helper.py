"""Resolution of the AUR helper used for update checks."""

from __future__ import annotations

import logging
import shutil
from typing import Optional

from models import HELPER_MODES, HelperChoice

logger = logging.getLogger(__name__)

# Probe order for "auto"
AUTO_ORDER = (HelperChoice.PARU, HelperChoice.YAY)


class HelperDetector:
    """Resolve the AUR helper once and keep the answer until reset()."""

    def __init__(self, mode: str = "auto", enabled: bool = True, path: Optional[str] = None):
        self._path = path
        self._choice: Optional[HelperChoice] = None
        self.unavailable: Optional[str] = None  # Forced helper that was not found
        self.reset(mode, enabled)

    def reset(self, mode: Optional[str] = None, enabled: Optional[bool] = None) -> None:
        """Forget the cached choice; the next resolve() probes again."""
        if mode is not None:
            if mode not in HELPER_MODES:
                raise ValueError(f"unknown AUR helper mode: {mode!r}")
            self.mode = mode
        if enabled is not None:
            self.enabled = enabled
        self._choice = None
        self.unavailable = None

    @property
    def resolved(self) -> bool:
        return self._choice is not None

    def resolve(self) -> HelperChoice:
        if self._choice is None:
            self._choice = self._probe()
        return self._choice

    def _has_binary(self, name: str) -> bool:
        return shutil.which(name, path=self._path) is not None

    def _probe(self) -> HelperChoice:
        if not self.enabled or self.mode == "none":
            return HelperChoice.NONE

        if self.mode == "auto":
            for candidate in AUTO_ORDER:
                if self._has_binary(candidate.value):
                    logger.info("detected AUR helper: %s", candidate.value)
                    return candidate
            logger.info("no AUR helper found (expected paru or yay)")
            return HelperChoice.NONE

        forced = HelperChoice(self.mode)
        if self._has_binary(forced.value):
            return forced

        logger.warning("configured AUR helper %s not found on PATH, AUR checks disabled", forced.value)
        self.unavailable = forced.value
        return HelperChoice.NONE
