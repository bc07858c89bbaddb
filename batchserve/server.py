"""FastAPI application serving batched text classification."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from . import __version__
from .backend import ModelBackend, TorchModelBackend, load_model_handle
from .batching.scheduler import Scheduler
from .config import ServeConfig, get_config
from .engine import ClassificationEngine
from .errors import BatchServeError, failure_kind
from .logging import get_logger, setup_logging
from .metrics import MetricsSink, PrometheusMetrics
from .schemas import ClassifyRequest, ClassifyResponse, ErrorResponse
from .tokenizer import TokenizerAdapter
from .types import FailureKind

logger = get_logger(__name__)

STATUS_BY_KIND = {
    FailureKind.QUEUE_FULL: 503,
    FailureKind.INPUT_TOO_LONG: 422,
    FailureKind.TOKENIZATION: 422,
    FailureKind.BACKEND: 500,
    FailureKind.CLOSED: 503,
}


def status_for(error: BatchServeError) -> int:
    """HTTP status code for a serving error."""
    return STATUS_BY_KIND.get(error.kind, 500)


def create_app(
    config: Optional[ServeConfig] = None,
    tokenizer: Optional[TokenizerAdapter] = None,
    backend: Optional[ModelBackend] = None,
    metrics: Optional[MetricsSink] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    The model is loaded on startup from ``config.model`` unless both
    ``tokenizer`` and ``backend`` are given.
    """
    config = config or get_config()
    setup_logging(config.logging)

    if metrics is None and config.logging.enable_metrics:
        metrics = PrometheusMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        model_tokenizer, model_backend = tokenizer, backend
        model_name = config.model.source or "model"

        if model_tokenizer is None or model_backend is None:
            handle, model_tokenizer = load_model_handle(config.model, config.scheduler)
            model_backend = TorchModelBackend(handle)

        scheduler = Scheduler(config.scheduler, model_tokenizer, model_backend, metrics=metrics)
        await scheduler.start()

        app.state.scheduler = scheduler
        app.state.engine = ClassificationEngine(scheduler, model_name)
        logger.info("Server ready", model=model_name, address=config.server.server_address)

        try:
            yield
        finally:
            await scheduler.stop()
            logger.info("Server stopped")

    app = FastAPI(
        title="BatchServe",
        description="Micro-batched text classification inference",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.metrics = metrics

    @app.exception_handler(BatchServeError)
    async def handle_serving_error(request: Request, exc: BatchServeError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("Request failed", kind=failure_kind(exc), error=str(exc))
        else:
            logger.warning("Request rejected", kind=failure_kind(exc), error=str(exc))

        body = ErrorResponse(
            error=failure_kind(exc),
            message=exc.message,
            details={k: str(v) for k, v in exc.details.items()},
        )
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.post("/classify", response_model=ClassifyResponse)
    async def classify(request: Request, body: ClassifyRequest):
        """Classify one or more texts."""
        engine: ClassificationEngine = request.app.state.engine
        return await engine.classify(body)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        scheduler: Optional[Scheduler] = getattr(request.app.state, "scheduler", None)
        if scheduler is None or not scheduler.is_running:
            raise HTTPException(status_code=503, detail="Service not ready")

        stats = scheduler.get_stats()
        return {
            "status": "healthy",
            "queue_depth": stats["queue_depth"],
            "total_batches": stats["total_batches"],
        }

    @app.get("/metrics")
    async def get_metrics():
        """Prometheus metrics endpoint."""
        if not isinstance(metrics, PrometheusMetrics):
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(content=metrics.render(), media_type=metrics.content_type)

    return app
