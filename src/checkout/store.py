"""
In-memory registry of live checkout flows, keyed by wizard submission id.

Flows hold timers and in-flight requests, so they live in the process that
serves the wizard. `discard` is the teardown path and always closes the flow.

Abandoned flows are evicted lazily whenever the store is read:
- a successful checkout after `completed_retention_seconds` without a request
- any other idle checkout after `idle_timeout_seconds`
A flow that is still waiting on the payment, or that holds a paid-but-unsubmitted
partial failure, is never evicted; only DELETE or shutdown removes it.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from src.checkout.flow import CheckoutFlow, CheckoutStep

logger = logging.getLogger(__name__)

FlowFactory = Callable[[str], CheckoutFlow]


class CheckoutStore:
    def __init__(
        self,
        factory: FlowFactory,
        *,
        completed_retention_seconds: float = 900.0,
        idle_timeout_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._flows: Dict[str, CheckoutFlow] = {}
        self._touched: Dict[str, float] = {}
        self.completed_retention_seconds = completed_retention_seconds
        self.idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock

    def get(self, submission_id: str) -> Optional[CheckoutFlow]:
        self.prune()
        flow = self._flows.get(submission_id)
        if flow is not None:
            self._touched[submission_id] = self._clock()
        return flow

    def get_or_create(self, submission_id: str) -> CheckoutFlow:
        self.prune()
        flow = self._flows.get(submission_id)
        if flow is None:
            flow = self._factory(submission_id)
            self._flows[submission_id] = flow
            logger.info("Checkout flow opened for submission %s", submission_id)
        self._touched[submission_id] = self._clock()
        return flow

    def discard(self, submission_id: str) -> bool:
        flow = self._flows.pop(submission_id, None)
        self._touched.pop(submission_id, None)
        if flow is None:
            return False
        flow.close()
        logger.info("Checkout flow closed for submission %s", submission_id)
        return True

    def prune(self) -> List[str]:
        """Close and drop every flow that has outlived its retention. Returns the evicted ids."""
        now = self._clock()
        expired = [
            submission_id
            for submission_id, flow in self._flows.items()
            if self._is_expired(flow, now - self._touched.get(submission_id, now))
        ]
        for submission_id in expired:
            logger.info("Evicting idle checkout %s (%s)", submission_id, self._flows[submission_id].current_step.value)
            self.discard(submission_id)
        return expired

    def _is_expired(self, flow: CheckoutFlow, idle: float) -> bool:
        if flow.partial_failure is not None:
            return False
        step = flow.current_step
        if step is CheckoutStep.PROCESSING:
            return False
        if step is CheckoutStep.SUCCESS:
            return idle >= self.completed_retention_seconds
        return idle >= self.idle_timeout_seconds

    def close_all(self) -> None:
        for submission_id in list(self._flows):
            self.discard(submission_id)

    def __len__(self) -> int:
        return len(self._flows)

    def __contains__(self, submission_id: str) -> bool:
        return submission_id in self._flows
