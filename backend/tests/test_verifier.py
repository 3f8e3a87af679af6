"""Tests for the remote verifier. requests.post is always mocked."""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from jobfill.services.field_classification import (
    FieldType,
    FieldVerifier,
    FormField,
    SignalAggregator,
    merge_answers,
)
from jobfill.services.field_classification.verifier import (
    SOURCE_API,
    SOURCE_API_ERROR,
    SOURCE_BUDGET,
    SOURCE_NO_API,
    SOURCE_PARSE_ERROR,
)
from jobfill.utils.rate_limiter import RateLimiter

POST = "jobfill.services.field_classification.verifier.requests.post"

FIELD = FormField(
    label="State",
    id="address--countryRegion",
    element_type="dropdown",
    options=("Alabama", "Alaska", "Oregon"),
)


@pytest.fixture
def aggregated():
    aggregator = SignalAggregator()
    return aggregator.aggregate(aggregator.collect(FIELD))


@pytest.fixture
def verifier() -> FieldVerifier:
    return FieldVerifier(api_key="test-key", api_base="https://llm.example.com/v1/", rate_limiter=RateLimiter(max_total_calls=5))


def completion(content: str, tokens: int = 120) -> Mock:
    response = Mock()
    response.json.return_value = {
        "choices": [{"message": {"content": content}}],
        "usage": {"total_tokens": tokens},
    }
    return response


def verdict(**overrides) -> str:
    data = {"field_type": "state", "answer": "Oregon", "confidence": 95, "reasoning": "options are US states"}
    data.update(overrides)
    return json.dumps(data)


class TestVerify:
    def test_successful_call(self, verifier, aggregated):
        with patch(POST, return_value=completion(verdict())) as mock_post:
            result = verifier.verify(FIELD, aggregated, "OR", "Name: Jane Doe")

        assert result.called
        assert result.source == SOURCE_API
        assert result.field_type == FieldType.STATE
        assert result.answer == "Oregon"
        assert result.confidence == pytest.approx(0.95)
        assert result.tokens_used == 120
        assert len(result.input_hash) == 16

        args, kwargs = mock_post.call_args
        assert args[0] == "https://llm.example.com/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        assert kwargs["json"]["temperature"] == 0.0
        assert verifier.stats["api_calls"] == 1
        assert verifier.rate_limiter.get_stats()["total_calls"] == 1

    def test_fenced_json(self, verifier, aggregated):
        content = f"```json\n{verdict()}\n```"
        with patch(POST, return_value=completion(content)):
            result = verifier.verify(FIELD, aggregated, None, "")

        assert result.field_type == FieldType.STATE

    def test_invalid_type_becomes_unknown(self, verifier, aggregated):
        with patch(POST, return_value=completion(verdict(field_type="us_state_dropdown"))):
            result = verifier.verify(FIELD, aggregated, None, "")

        assert result.called
        assert result.field_type == FieldType.UNKNOWN

    def test_null_answer(self, verifier, aggregated):
        with patch(POST, return_value=completion(verdict(answer="null", confidence=0.7))):
            result = verifier.verify(FIELD, aggregated, None, "")

        assert result.answer is None
        assert result.confidence == pytest.approx(0.7)

    def test_http_error_falls_back_to_proposal(self, verifier, aggregated):
        response = completion(verdict())
        response.raise_for_status.side_effect = requests.HTTPError("500 Server Error")

        with patch(POST, return_value=response):
            result = verifier.verify(FIELD, aggregated, "OR", "")

        assert not result.called
        assert result.source == SOURCE_API_ERROR
        assert result.field_type == aggregated.field_type
        assert result.answer == "OR"
        # The request went out, so it still spends budget
        assert verifier.rate_limiter.get_stats()["total_calls"] == 1

    def test_connection_error(self, verifier, aggregated):
        with patch(POST, side_effect=requests.ConnectionError("refused")):
            result = verifier.verify(FIELD, aggregated, "OR", "")

        assert result.source == SOURCE_API_ERROR
        assert verifier.stats["fallbacks"] == 1

    def test_unparseable_content(self, verifier, aggregated):
        with patch(POST, return_value=completion("It is probably a state field.")):
            result = verifier.verify(FIELD, aggregated, "OR", "")

        assert result.source == SOURCE_PARSE_ERROR
        assert result.answer == "OR"

    def test_no_api_key(self, aggregated):
        verifier = FieldVerifier(api_key=None)

        with patch(POST) as mock_post:
            result = verifier.verify(FIELD, aggregated, "OR", "")

        mock_post.assert_not_called()
        assert not verifier.is_available
        assert result.source == SOURCE_NO_API
        assert result.field_type == aggregated.field_type

    def test_budget_exhausted(self, aggregated):
        verifier = FieldVerifier(api_key="test-key", rate_limiter=RateLimiter(max_total_calls=0, max_calls_per_minute=0))

        with patch(POST) as mock_post:
            result = verifier.verify(FIELD, aggregated, "OR", "")

        mock_post.assert_not_called()
        assert result.source == SOURCE_BUDGET
        assert "budget exhausted" in result.reasoning

    def test_type_change_counted(self, verifier, aggregated):
        with patch(POST, return_value=completion(verdict(field_type="country"))):
            verifier.verify(FIELD, aggregated, None, "")

        assert verifier.stats["type_changes"] == 1


class TestAudit:
    def test_same_input_same_hash(self, verifier, aggregated):
        with patch(POST, return_value=completion(verdict())):
            first = verifier.verify(FIELD, aggregated, "OR", "")
            second = verifier.verify(FIELD, aggregated, "OR", "")

        assert first.input_hash == second.input_hash
        assert len(verifier.get_audit_log()) == 2

        verifier.clear_audit_log()
        assert verifier.get_audit_log() == []

    def test_prompt_warns_on_strong_agreement(self, verifier, aggregated):
        prompt = verifier.build_prompt(FIELD, aggregated, "OR", "Name: Jane Doe")

        assert "STRONG SIGNAL AGREEMENT" in prompt
        assert "PROPOSED CLASSIFICATION: state" in prompt
        assert "phone_extension" in prompt
        assert "Name: Jane Doe" in prompt


class TestMergeAnswers:
    @pytest.mark.parametrize("resolver_answer, verifier_answer, expected", [
        (None, "Yes", "Yes"),
        (None, None, None),
        ("Yes", None, "Yes"),
        ("Yes", "No", "No"),
        ("Oregon State University", "OSU", "Oregon State University"),
        ("OR", "Oregon", "Oregon"),
        ("Jane", "Yes", "Jane"),
    ])
    def test_merge(self, resolver_answer, verifier_answer, expected):
        assert merge_answers(resolver_answer, verifier_answer) == expected
