"""
Classification Engine

Splits a multi-input API request into one scheduler submission per text,
awaits them concurrently and merges the outcomes into a single response.
Any failed input fails the whole request.
"""

import asyncio
import time
import uuid
from typing import List, Optional

from .batching.scheduler import Scheduler
from .errors import failure_kind, summarize_errors
from .logging import get_logger
from .schemas import ClassificationData, ClassifyRequest, ClassifyResponse, Usage
from .types import InferenceResult, Request

logger = get_logger(__name__)


class ClassificationEngine:
    """Transport-facing facade over the scheduler."""

    def __init__(self, scheduler: Scheduler, model_name: Optional[str] = None):
        self.scheduler = scheduler
        self.model_name = model_name
        self.total_api_requests = 0

    async def classify(self, request: ClassifyRequest) -> ClassifyResponse:
        """Classify every text of ``request``.

        Raises the first failure among the inputs; admission failures are
        raised before any queued input is waited on.
        """
        texts = request.texts
        self.total_api_requests += 1
        logger.info(
            "Processing classification request", input_count=len(texts), model=request.model
        )

        try:
            response = await self._classify(request, texts)
        except asyncio.CancelledError:
            self._record("cancelled", len(texts))
            raise
        except Exception as e:
            self._record(failure_kind(e), len(texts))
            raise

        self._record("success", len(texts))
        logger.info("Classification completed successfully", input_count=len(texts))
        return response

    async def _classify(self, request: ClassifyRequest, texts: List[str]) -> ClassifyResponse:
        admitted: List[Request] = []
        try:
            for text in texts:
                admitted.append(self.scheduler.submit_request(text))
        except Exception:
            self._withdraw(admitted)
            raise

        try:
            outcomes = await asyncio.gather(*(r.future for r in admitted), return_exceptions=True)
        except asyncio.CancelledError:
            self._withdraw(admitted)
            raise

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        if errors:
            index = next(i for i, o in enumerate(outcomes) if isinstance(o, BaseException))
            logger.error(
                "Classification failed",
                input_index=index,
                failures=summarize_errors(errors),
                error=str(errors[0]),
            )
            raise errors[0]

        return self._merge(request.model, outcomes)

    def _record(self, status: str, inputs: int):
        if self.scheduler.metrics:
            self.scheduler.metrics.record_api_request(status, inputs)

    def _withdraw(self, requests: List[Request]):
        for request in requests:
            if not self.scheduler.withdraw(request.request_id):
                request.future.cancel()

    def _merge(self, model: str, results: List[InferenceResult]) -> ClassifyResponse:
        data = [
            ClassificationData(
                index=index,
                label=result.label,
                probs=list(result.probs),
                num_classes=result.num_classes,
            )
            for index, result in enumerate(results)
        ]
        prompt_tokens = sum(result.num_tokens for result in results)

        return ClassifyResponse(
            id=f"classify-{uuid.uuid4().hex}",
            object="list",
            created=int(time.time()),
            model=model or self.model_name or "",
            data=data,
            usage=Usage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
        )
