"""
Batch Assembly

This module turns a cut list of requests into padded input tensors. Rows
follow dequeue order and every row is mapped back to its request through an
explicit index, so reordering rows never breaks result routing.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import torch

from ..errors import TokenizationError
from ..logging import get_logger
from ..tokenizer import TokenizerAdapter
from ..types import Batch, Encoding, Request

logger = get_logger(__name__)


@dataclass
class AssemblyResult:
    """Outcome of assembling one cut.

    ``batch`` is ``None`` when no request could be tokenized.
    """

    batch: Optional[Batch]
    failures: List[Tuple[Request, TokenizationError]] = field(default_factory=list)

    @property
    def num_rows(self) -> int:
        return self.batch.size if self.batch is not None else 0


class BatchAssembler:
    """Tokenizes, truncates and pads a list of requests."""

    def __init__(self, tokenizer: TokenizerAdapter, max_sequence_length: int):
        if max_sequence_length < 1:
            raise ValueError("max_sequence_length must be at least 1")

        self.tokenizer = tokenizer
        self.max_sequence_length = max_sequence_length

    def assemble(self, batch_id: str, requests: Sequence[Request]) -> AssemblyResult:
        """Build a batch from ``requests``.

        Requests whose text cannot be tokenized are left out of the batch and
        returned as failures; the remaining requests keep their relative order.
        """
        encoded: List[Tuple[Request, Encoding]] = []
        failures: List[Tuple[Request, TokenizationError]] = []

        for request in requests:
            try:
                encoding = self.tokenizer.encode(request.text, self.max_sequence_length)
            except TokenizationError as e:
                failures.append((request, _with_request_id(e, request)))
                continue

            if not encoding.input_ids:
                failures.append(
                    (request, TokenizationError("text produced no tokens", request.request_id))
                )
                continue

            encoded.append((request, encoding))

        if failures:
            logger.warning(
                "Requests failed tokenization",
                batch_id=batch_id,
                failed=len(failures),
                request_ids=[r.request_id for r, _ in failures][:5],
            )

        if not encoded:
            return AssemblyResult(batch=None, failures=failures)

        batch = self._pad(batch_id, encoded)

        logger.debug(
            "Batch assembled",
            batch_id=batch_id,
            batch_size=batch.size,
            sequence_length=batch.sequence_length,
        )
        return AssemblyResult(batch=batch, failures=failures)

    def _pad(self, batch_id: str, encoded: List[Tuple[Request, Encoding]]) -> Batch:
        """Pad every row to the longest encoding, capped at the sequence limit."""
        seq_len = min(max(len(e) for _, e in encoded), self.max_sequence_length)
        rows = len(encoded)

        input_ids = torch.full((rows, seq_len), self.tokenizer.pad_token_id, dtype=torch.long)
        attention_mask = torch.zeros((rows, seq_len), dtype=torch.long)

        token_counts = []
        for row, (_, encoding) in enumerate(encoded):
            ids = encoding.input_ids[:seq_len]
            mask = encoding.attention_mask[:seq_len]
            input_ids[row, : len(ids)] = torch.tensor(ids, dtype=torch.long)
            attention_mask[row, : len(mask)] = torch.tensor(mask, dtype=torch.long)
            token_counts.append(len(ids))

        return Batch(
            batch_id=batch_id,
            requests=tuple(request for request, _ in encoded),
            input_ids=input_ids,
            attention_mask=attention_mask,
            row_index=tuple(range(rows)),
            token_counts=tuple(token_counts),
        )


def _with_request_id(error: TokenizationError, request: Request) -> TokenizationError:
    if error.request_id:
        return error
    return TokenizationError(error.reason, request.request_id, **error.details)
