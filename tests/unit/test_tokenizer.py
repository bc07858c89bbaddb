"""Tests for the Hugging Face tokenizer adapter."""

import pytest

from batchserve.errors import TokenizationError
from batchserve.tokenizer import HuggingFaceTokenizer


class StubPreTrainedTokenizer:
    """Mimics the call signature of a transformers tokenizer."""

    def __init__(self, pad_token_id=None, eos_token_id=2, broken=False):
        self.pad_token_id = pad_token_id
        self.eos_token_id = eos_token_id
        self.broken = broken

    def __call__(self, text, truncation=False, max_length=None, padding=False, **kwargs):
        if self.broken:
            raise ValueError("unsupported character")
        ids = [101] + [len(w) for w in text.split()] + [102]
        if truncation and max_length is not None:
            ids = ids[:max_length]
        return {"input_ids": ids, "attention_mask": [1] * len(ids)}


class TestHuggingFaceTokenizer:
    def test_pad_token(self):
        adapter = HuggingFaceTokenizer(StubPreTrainedTokenizer(pad_token_id=0))
        assert adapter.pad_token_id == 0

    def test_pad_token_falls_back_to_eos(self):
        stub = StubPreTrainedTokenizer(pad_token_id=None, eos_token_id=50256)
        adapter = HuggingFaceTokenizer(stub)
        assert adapter.pad_token_id == 50256

    def test_encode_truncates(self):
        adapter = HuggingFaceTokenizer(StubPreTrainedTokenizer(pad_token_id=0))
        encoding = adapter.encode("the quick brown fox", max_len=3)

        assert encoding.input_ids == [101, 3, 5]
        assert encoding.attention_mask == [1, 1, 1]
        assert len(encoding) == 3

    def test_count_tokens_is_untruncated(self):
        adapter = HuggingFaceTokenizer(StubPreTrainedTokenizer(pad_token_id=0))
        assert adapter.count_tokens("the quick brown fox") == 6

    def test_tokenizer_failure_is_wrapped(self):
        adapter = HuggingFaceTokenizer(StubPreTrainedTokenizer(pad_token_id=0, broken=True))
        with pytest.raises(TokenizationError, match="unsupported character"):
            adapter.encode("text", max_len=8)
        with pytest.raises(TokenizationError):
            adapter.count_tokens("text")

    def test_non_string_input(self):
        adapter = HuggingFaceTokenizer(StubPreTrainedTokenizer(pad_token_id=0))
        with pytest.raises(TokenizationError, match="expected str"):
            adapter.encode(42, max_len=8)
