"""
Tokenizer adapters.

The serving core depends on tokenization only through ``TokenizerAdapter``:
``encode(text, max_len)`` returns token ids and an attention mask truncated to
``max_len``, and ``count_tokens(text)`` reports the untruncated length used by
the admission-time length check.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from .errors import TokenizationError
from .logging import get_logger
from .types import Encoding

try:
    from transformers import AutoTokenizer

    TRANSFORMERS_AVAILABLE = True
except ImportError:
    TRANSFORMERS_AVAILABLE = False
    AutoTokenizer = None

logger = get_logger(__name__)


class TokenizerAdapter(ABC):
    """Narrow tokenization capability consumed by the batch assembler."""

    pad_token_id: int = 0

    @abstractmethod
    def encode(self, text: str, max_len: int) -> Encoding:
        """Tokenize ``text``, truncating to ``max_len`` tokens.

        Raises:
            TokenizationError: if the text cannot be tokenized
        """

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Number of tokens ``text`` encodes to without truncation."""


class HuggingFaceTokenizer(TokenizerAdapter):
    """Adapter over a Hugging Face ``PreTrainedTokenizer``."""

    def __init__(self, tokenizer: Any):
        self._tokenizer = tokenizer

        pad_token_id = getattr(tokenizer, "pad_token_id", None)
        if pad_token_id is None:
            # Some checkpoints ship without a pad token
            pad_token_id = getattr(tokenizer, "eos_token_id", None) or 0
            logger.warning("Tokenizer has no pad token, falling back", pad_token_id=pad_token_id)
        self.pad_token_id = int(pad_token_id)

    @classmethod
    def from_pretrained(
        cls, source: str, revision: str = "main", local_files_only: bool = False
    ) -> "HuggingFaceTokenizer":
        """Load a tokenizer from a Hub model id or a local directory."""
        if not TRANSFORMERS_AVAILABLE:
            raise ImportError("Transformers not available. Install with: pip install transformers")

        tokenizer = AutoTokenizer.from_pretrained(
            source,
            revision=revision,
            trust_remote_code=False,
            local_files_only=local_files_only,
        )
        return cls(tokenizer)

    def encode(self, text: str, max_len: int) -> Encoding:
        self._check_text(text)
        try:
            encoded = self._tokenizer(
                text,
                truncation=True,
                max_length=max_len,
                padding=False,
                return_attention_mask=True,
            )
        except Exception as e:
            raise TokenizationError(str(e)) from e

        return Encoding(
            input_ids=list(encoded["input_ids"]),
            attention_mask=list(encoded["attention_mask"]),
        )

    def count_tokens(self, text: str) -> int:
        self._check_text(text)
        try:
            encoded = self._tokenizer(text, truncation=False, padding=False)
        except Exception as e:
            raise TokenizationError(str(e)) from e
        return len(encoded["input_ids"])

    @staticmethod
    def _check_text(text: Optional[str]):
        if not isinstance(text, str):
            raise TokenizationError(f"expected str input, got {type(text).__name__}")
