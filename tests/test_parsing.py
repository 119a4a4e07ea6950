"""Tests for strict JSON extraction from LLM output."""

from taskwave.core.invoker import InvocationOutcome, OutcomeKind
from taskwave.core.parsing import Parsed, Unparseable, outcome_failure, parse_payload


class TestParsePayload:
    def test_bare_object(self):
        result = parse_payload('{"severity": "low", "issues": []}', required=("severity",))
        assert result == Parsed(data={"severity": "low", "issues": []})

    def test_fenced_block(self):
        output = 'Here you go:\n```json\n{"severity": "high"}\n```\nBye.'
        result = parse_payload(output, required=("severity",))
        assert isinstance(result, Parsed)
        assert result.data["severity"] == "high"

    def test_object_embedded_in_prose(self):
        output = 'The audit found {"severity": "medium", "summary": "ok {braces}"} overall.'
        result = parse_payload(output, required=("severity",))
        assert isinstance(result, Parsed)
        assert result.data["summary"] == "ok {braces}"

    def test_prefers_object_with_required_keys(self):
        output = 'config {"a": 1} then {"severity": "low"}'
        result = parse_payload(output, required=("severity",))
        assert result.data == {"severity": "low"}

    def test_missing_required_key(self):
        result = parse_payload('{"summary": "x"}', required=("severity",))
        assert isinstance(result, Unparseable)
        assert result.reason == "missing keys: severity"

    def test_no_json(self):
        result = parse_payload("I could not audit this directory.")
        assert isinstance(result, Unparseable)
        assert result.reason == "no JSON object found"
        assert result.raw == "I could not audit this directory."

    def test_truncated_json_is_not_scraped(self):
        result = parse_payload('{"severity": "low", "issues": [')
        assert isinstance(result, Unparseable)

    def test_empty(self):
        assert parse_payload("   ") == Unparseable(raw="   ", reason="empty output")

    def test_top_level_array_is_not_an_object(self):
        assert isinstance(parse_payload("[1, 2, 3]"), Unparseable)


class TestOutcomeFailure:
    def test_success_is_none(self):
        assert outcome_failure(InvocationOutcome(kind=OutcomeKind.OK, output="x")) is None

    def test_timeout(self):
        failure = outcome_failure(InvocationOutcome(kind=OutcomeKind.TIMEOUT, error="timeout"))
        assert failure == {"status": "timeout", "reason": "timeout"}

    def test_empty(self):
        failure = outcome_failure(InvocationOutcome(kind=OutcomeKind.EMPTY, error="empty output"))
        assert failure["status"] == "empty_output"

    def test_failed_keeps_session(self):
        failure = outcome_failure(
            InvocationOutcome(kind=OutcomeKind.FAILED, error="exit code 1", session_id="abc")
        )
        assert failure == {"status": "llm_error", "reason": "exit code 1", "sessionId": "abc"}
