"""Tests for batch assembly."""

import pytest
import torch

from batchserve.batching.assembler import BatchAssembler
from batchserve.errors import TokenizationError

from conftest import MALFORMED


class TestBatchAssembler:
    def test_pads_to_longest_row(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=16)
        requests = [make_request("a"), make_request("a b c"), make_request("a b")]

        result = assembler.assemble("batch_000001", requests)
        batch = result.batch

        assert batch.size == 3
        assert batch.sequence_length == 3
        assert batch.input_ids.dtype == torch.long
        assert batch.attention_mask.tolist() == [[1, 0, 0], [1, 1, 1], [1, 1, 0]]
        assert batch.input_ids[0, 1:].tolist() == [0, 0]
        assert batch.token_counts == (1, 3, 2)
        assert result.failures == []

    def test_truncates_to_max_sequence_length(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=2)
        result = assembler.assemble("b", [make_request("a b c d"), make_request("a")])

        assert result.batch.sequence_length == 2
        assert result.batch.token_counts == (2, 1)

    def test_rows_follow_dequeue_order(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=8)
        requests = [make_request(f"text {i}") for i in range(4)]

        batch = assembler.assemble("b", requests).batch

        assert [request for _, request in batch.rows()] == requests
        assert sorted(batch.row_index) == list(range(batch.size))

    def test_tokenization_failure_is_isolated(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=8)
        good_a, bad, good_b = make_request("x"), make_request(MALFORMED), make_request("y z")

        result = assembler.assemble("b", [good_a, bad, good_b])

        assert result.num_rows == 2
        assert result.batch.requests == (good_a, good_b)
        assert len(result.failures) == 1
        failed_request, error = result.failures[0]
        assert failed_request is bad
        assert isinstance(error, TokenizationError)
        assert error.request_id == bad.request_id

    def test_non_string_input_fails_tokenization(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=8)
        result = assembler.assemble("b", [make_request(None), make_request("ok")])

        assert result.num_rows == 1
        assert len(result.failures) == 1

    def test_empty_encoding_is_a_failure(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=8)
        result = assembler.assemble("b", [make_request("   ")])

        assert result.batch is None
        assert "no tokens" in str(result.failures[0][1])

    def test_all_failed_yields_no_batch(self, tokenizer, make_request):
        assembler = BatchAssembler(tokenizer, max_sequence_length=8)
        result = assembler.assemble("b", [make_request(MALFORMED), make_request(MALFORMED)])

        assert result.batch is None
        assert result.num_rows == 0
        assert len(result.failures) == 2

    def test_invalid_sequence_length(self, tokenizer):
        with pytest.raises(ValueError):
            BatchAssembler(tokenizer, max_sequence_length=0)
