"""
Result Routing

Every admitted request is resolved through its future exactly once, with
either an ``InferenceResult`` or the exception describing its failure.
"""

from typing import Iterable, Optional

from ..errors import BackendError, BatchServeError, RoutingError, failure_kind
from ..logging import get_logger
from ..metrics import MetricsSink
from ..types import InferenceResult, Request

logger = get_logger(__name__)


class ResultRouter:
    """Signals completion handles and reports outcomes to the metrics sink."""

    def __init__(self, metrics: Optional[MetricsSink] = None):
        self.metrics = metrics
        self.delivered = 0
        self.failed = 0
        self.discarded = 0

    def deliver(self, request: Request, result: InferenceResult) -> bool:
        """Resolve ``request`` with a successful result.

        Returns False when the caller already abandoned the request.
        """
        if not self._claim(request):
            return False

        request.future.set_result(result)
        self.delivered += 1
        if self.metrics:
            self.metrics.record_outcome(True)
        return True

    def fail(self, request: Request, error: BaseException) -> bool:
        """Resolve ``request`` with ``error``.

        Returns False when the caller already abandoned the request.
        """
        if not self._claim(request):
            return False

        request.future.set_exception(error)
        self.failed += 1
        if self.metrics:
            self.metrics.record_outcome(False)
            self.metrics.record_failure(failure_kind(error))
        return True

    def fail_all(self, requests: Iterable[Request], error: BackendError) -> int:
        """Fail every request with its own copy of ``error``; returns how many were signalled."""
        return sum(1 for request in requests if self.fail(request, error.for_request()))

    def _claim(self, request: Request) -> bool:
        if request.future.cancelled():
            self.discarded += 1
            logger.debug("Discarding outcome for withdrawn request", request_id=request.request_id)
            return False

        if request.future.done():
            raise RoutingError(request.request_id, "completion handle already signalled")

        return True
