"""Integrity warnings (tab switches, focus loss, copy attempts) per attempt."""

import logging
import uuid
from dataclasses import dataclass

from exam_engine.services.attempt_store import AttemptStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarningOutcome:
    warning_count: int
    breached: bool
    terminate: bool


class AntiCheatMonitor:
    """Counts warnings atomically and reports threshold breaches.

    Whether a breach ends the attempt is configuration; an advisory breach
    is logged and the attempt continues.
    """

    def __init__(self, store: AttemptStore, threshold: int, terminal: bool = True):
        self.store = store
        self.threshold = threshold
        self.terminal = terminal

    def record_warning(self, attempt_id: uuid.UUID) -> WarningOutcome | None:
        """Returns ``None`` when the attempt is no longer in progress."""
        count = self.store.increment_warning(attempt_id)
        if count is None:
            return None
        breached = count >= self.threshold
        if breached:
            logger.warning(
                "Attempt %s reached %d/%d integrity warnings (terminal=%s)",
                attempt_id, count, self.threshold, self.terminal,
            )
        return WarningOutcome(
            warning_count=count,
            breached=breached,
            terminate=breached and self.terminal,
        )
