"""
Inactivity Monitor — releases testaments whose owners went quiet.

``evaluate_all()`` is the single entry point a scheduler calls at a fixed
cadence. Each active testament is checked on its own: a failure on one
record is logged and reported, and evaluation moves on to the next. The
monitor only ever moves testaments from Active to Released; it never
touches key boxes or beneficiaries. A due testament with an owner write
in flight is left for the next run.
"""
import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from ..exceptions import VaultNotFound
from ..models import ReleaseEvent, TestamentID
from ..utils import Clock
from ..vault.registry import VaultRegistry
from .engine import TestamentEngine

logger = logging.getLogger("legacy.testament")

ReleaseListener = Callable[[ReleaseEvent], None]


class EvaluationReport(BaseModel):
    evaluated: int = 0
    released: list[ReleaseEvent] = Field(default_factory=list)
    failures: dict[TestamentID, str] = Field(default_factory=dict)
    deferred: list[TestamentID] = Field(default_factory=list)

    @property
    def released_ids(self) -> list[TestamentID]:
        return [event.testament_id for event in self.released]


class InactivityMonitor:
    """Evaluate the inactivity condition of every active testament."""

    def __init__(
        self,
        engine: TestamentEngine,
        registry: VaultRegistry,
        clock: Optional[Clock] = None,
        listeners: Optional[list[ReleaseListener]] = None,
    ):
        self._engine = engine
        self._registry = registry
        self._clock = clock or engine.clock
        self._listeners: list[ReleaseListener] = list(listeners or [])

    def add_listener(self, listener: ReleaseListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: ReleaseEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as err:
                logger.error(
                    "Release listener failed for testament=%s: %s",
                    event.testament_id, err,
                )

    def evaluate_all(self) -> EvaluationReport:
        """Release every active testament whose threshold has passed.

        Returns:
            Report with the number of testaments evaluated, the release
            events emitted, the ids deferred because an owner write was
            in flight, and the per-testament failures.
        """
        report = EvaluationReport()
        now = self._clock.now()
        for testament_id, owner, condition in self._engine.active_conditions():
            report.evaluated += 1
            try:
                if owner not in self._registry:
                    raise VaultNotFound(owner)
                if not condition.is_met(now):
                    continue
                if self._engine.is_busy(testament_id):
                    # an owner write is in flight; retry on the next run
                    logger.debug("Release deferred for busy testament=%s", testament_id)
                    report.deferred.append(testament_id)
                    continue
                event = self._engine.release(testament_id)
            except Exception as err:
                logger.error(
                    "Error evaluating testament id=%s owner=%s: %s",
                    testament_id, owner, err,
                )
                report.failures[testament_id] = str(err)
                continue
            if event is not None:
                report.released.append(event)
                self._emit(event)
        logger.info(
            "Inactivity evaluation complete: evaluated=%d released=%d "
            "deferred=%d failures=%d",
            report.evaluated, len(report.released), len(report.deferred),
            len(report.failures),
        )
        return report
