"""
Model Backend for Sequence Classification

This module wraps a loaded sequence-classification model and its device. The
backend exposes a single capability, ``infer(input_ids, attention_mask)``,
which runs one forward pass and returns per-row logits. Device placement is
decided once at startup.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import torch

from .config import ModelConfig, SchedulerConfig
from .errors import BackendError, ModelLoadError, raise_configuration_error
from .logging import get_logger
from .tokenizer import HuggingFaceTokenizer
from .types import Batch, InferenceResult
from .utils.timers import time_operation

try:
    from transformers import AutoModelForSequenceClassification

    TRANSFORMERS_AVAILABLE = True
except ImportError:
    TRANSFORMERS_AVAILABLE = False
    AutoModelForSequenceClassification = None

logger = get_logger(__name__)


def select_device(preference: str = "auto") -> torch.device:
    """Resolve a device preference to a concrete ``torch.device``.

    ``auto`` prefers Apple Metal, then CUDA, then CPU.
    """
    preference = preference.lower()
    mps_available = hasattr(torch.backends, "mps") and torch.backends.mps.is_available()

    if preference == "cpu":
        return torch.device("cpu")

    if preference == "cuda":
        if not torch.cuda.is_available():
            raise_configuration_error("device", preference, "an available CUDA device")
        return torch.device("cuda", 0)

    if preference == "mps":
        if not mps_available:
            raise_configuration_error("device", preference, "an available Metal device")
        return torch.device("mps")

    if preference != "auto":
        raise_configuration_error("device", preference, "one of auto, cpu, cuda, mps")

    if mps_available:
        logger.info("Using metal acceleration")
        return torch.device("mps")
    if torch.cuda.is_available():
        logger.info("Using CUDA GPU acceleration")
        return torch.device("cuda", 0)

    logger.info("No accelerator available, running on CPU")
    return torch.device("cpu")


@dataclass(frozen=True)
class ModelHandle:
    """A loaded model, its device and its label mapping.

    Shared read-only by every batch for the lifetime of the process.
    """

    model: Any
    device: torch.device
    id2label: Dict[int, str]
    name: str = "model"

    @property
    def num_labels(self) -> int:
        return len(self.id2label)


class ModelBackend(ABC):
    """One forward pass over a batch tensor."""

    @property
    @abstractmethod
    def id2label(self) -> Dict[int, str]:
        """Mapping from class index to human-readable label."""

    @abstractmethod
    def infer(self, input_ids: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        """Return logits of shape ``[rows, num_labels]``.

        Raises:
            BackendError: on any device or resource failure
        """


class TorchModelBackend(ModelBackend):
    """Backend running a PyTorch sequence-classification model."""

    def __init__(self, handle: ModelHandle):
        self.handle = handle
        self.total_forward_passes = 0
        self.total_rows = 0

    @property
    def id2label(self) -> Dict[int, str]:
        return self.handle.id2label

    @property
    def device(self) -> torch.device:
        return self.handle.device

    def infer(self, input_ids: torch.Tensor, attention_mask: torch.Tensor) -> torch.Tensor:
        rows = input_ids.shape[0]

        try:
            with time_operation("forward_pass", {"rows": rows}):
                input_ids = input_ids.to(self.device)
                attention_mask = attention_mask.to(self.device)

                with torch.inference_mode():
                    outputs = self.handle.model(input_ids=input_ids, attention_mask=attention_mask)

                logits = getattr(outputs, "logits", outputs)
                logits = logits.detach().float().cpu()
        except RuntimeError as e:
            # torch raises OutOfMemoryError and device faults as RuntimeError subclasses
            self._release_device_memory()
            raise BackendError(str(e), rows=rows) from e

        if logits.dim() != 2 or logits.shape[0] != rows:
            raise BackendError(
                f"expected logits with {rows} rows, got shape {tuple(logits.shape)}", rows=rows
            )

        self.total_forward_passes += 1
        self.total_rows += rows
        return logits

    def _release_device_memory(self):
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    def get_stats(self) -> Dict[str, Any]:
        """Get backend statistics."""
        return {
            "backend": "torch",
            "model": self.handle.name,
            "device": str(self.device),
            "num_labels": self.handle.num_labels,
            "total_forward_passes": self.total_forward_passes,
            "total_rows": self.total_rows,
        }


def logits_to_results(
    logits: torch.Tensor, id2label: Dict[int, str], batch: Batch
) -> List[InferenceResult]:
    """Convert per-row logits to results, in row order.

    The score is the softmax probability of the arg-max label. Ids missing
    from ``id2label`` are reported as ``LABEL_{id}``.
    """
    probs = torch.softmax(logits.float(), dim=-1)
    scores, label_ids = probs.max(dim=-1)

    results = []
    for row, request in batch.rows():
        label_id = int(label_ids[row])
        results.append(
            InferenceResult(
                request_id=request.request_id,
                label_id=label_id,
                label=id2label.get(label_id, f"LABEL_{label_id}"),
                score=float(scores[row]),
                probs=tuple(float(p) for p in probs[row].tolist()),
                num_tokens=batch.token_counts[row],
            )
        )
    return results


def _resolve_id2label(model: Any, model_config: ModelConfig) -> Dict[int, str]:
    """Configured mapping takes precedence over the model's own config."""
    override = model_config.parse_id2label()
    if override:
        return override

    mapping = getattr(getattr(model, "config", None), "id2label", None)
    if mapping:
        return {int(k): str(v) for k, v in mapping.items()}

    raise ModelLoadError(
        model_config.source or "<unknown>",
        "id2label not found in the model configuration nor specified as a parameter",
    )


def load_model_handle(
    model_config: ModelConfig,
    scheduler_config: SchedulerConfig,
    device: Optional[torch.device] = None,
) -> Tuple[ModelHandle, HuggingFaceTokenizer]:
    """Load a sequence-classification model and its tokenizer.

    Either ``model_path`` (a local directory) or ``model_id`` (a Hub model id
    at ``revision``) must be set.
    """
    if not TRANSFORMERS_AVAILABLE:
        raise ImportError("Transformers not available. Install with: pip install transformers")

    source = model_config.source
    if not source:
        raise ModelLoadError("<unset>", "either model_id or model_path must be specified")

    device = device or select_device(scheduler_config.device)
    local_only = model_config.model_path is not None

    try:
        with time_operation("model_loading", {"source": source}):
            logger.info("Loading model and tokenizer", source=source, device=str(device))

            tokenizer = HuggingFaceTokenizer.from_pretrained(
                source, revision=model_config.revision, local_files_only=local_only
            )
            model = AutoModelForSequenceClassification.from_pretrained(
                source,
                revision=model_config.revision,
                use_safetensors=model_config.use_safetensors,
                local_files_only=local_only,
                trust_remote_code=False,
            )
            model.to(device)
            model.eval()
    except ModelLoadError:
        raise
    except Exception as e:
        logger.error("Failed to load model", source=source, error=str(e))
        raise ModelLoadError(source, str(e)) from e

    id2label = _resolve_id2label(model, model_config)
    handle = ModelHandle(model=model, device=device, id2label=id2label, name=source)

    logger.info(
        "Model loaded successfully",
        source=source,
        device=str(device),
        num_labels=handle.num_labels,
        parameters=sum(p.numel() for p in model.parameters()),
    )
    return handle, tokenizer
