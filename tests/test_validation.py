"""
Tests for input validation helpers
"""
import pytest

from hookrelay.core.validation import EventValidator, UrlValidator


class TestEventTypeValidation:
    @pytest.mark.unit
    @pytest.mark.parametrize("event_type", ["job.created", "candidate.status_changed", "ping", "a1.b2.c3"])
    def test_valid(self, event_type):
        assert EventValidator.validate_type(event_type) == (True, None)

    @pytest.mark.unit
    @pytest.mark.parametrize("event_type", ["", "Job.Created", "job..created", ".job", "job created", "job-created"])
    def test_invalid(self, event_type):
        is_valid, error = EventValidator.validate_type(event_type)
        assert not is_valid
        assert error

    @pytest.mark.unit
    def test_too_long(self):
        is_valid, error = EventValidator.validate_type("a" * (EventValidator.MAX_TYPE_LENGTH + 1))
        assert not is_valid
        assert "too long" in error

    @pytest.mark.unit
    def test_whitelist(self):
        allowed = {"job.created"}
        assert EventValidator.validate_type("job.created", allowed)[0]
        is_valid, error = EventValidator.validate_type("job.deleted", allowed)
        assert not is_valid
        assert "Unsupported" in error


class TestTextValidation:
    @pytest.mark.unit
    def test_required(self):
        assert EventValidator.validate_text("   ", "Source", 10) == (False, "Source is required")

    @pytest.mark.unit
    def test_length(self):
        assert not EventValidator.validate_text("x" * 11, "Source", 10)[0]

    @pytest.mark.unit
    def test_control_characters(self):
        is_valid, error = EventValidator.validate_text("jobs\x00svc", "Source", 50)
        assert not is_valid
        assert "control" in error

    @pytest.mark.unit
    def test_newline_allowed(self):
        assert EventValidator.validate_text("line\nbreak", "Event name", 50) == (True, None)


class TestPayloadAndKey:
    @pytest.mark.unit
    @pytest.mark.parametrize("payload", [[], "text", None, 3])
    def test_payload_must_be_object(self, payload):
        assert not EventValidator.validate_payload(payload)[0]

    @pytest.mark.unit
    def test_empty_object_allowed(self):
        assert EventValidator.validate_payload({})[0]

    @pytest.mark.unit
    def test_idempotency_key(self):
        assert EventValidator.validate_idempotency_key(None) == (True, None)
        assert EventValidator.validate_idempotency_key("order-1")[0]
        assert not EventValidator.validate_idempotency_key("  ")[0]
        assert not EventValidator.validate_idempotency_key(
            "k" * (EventValidator.MAX_IDEMPOTENCY_KEY_LENGTH + 1)
        )[0]


class TestUrlValidator:
    @pytest.mark.unit
    @pytest.mark.parametrize("url", ["https://hooks.example.com/in", "http://localhost:9000/cb"])
    def test_valid(self, url):
        assert UrlValidator.validate(url) == (True, None)

    @pytest.mark.unit
    @pytest.mark.parametrize("url", ["", "ftp://example.com", "https://", "example.com/hook"])
    def test_invalid(self, url):
        assert not UrlValidator.validate(url)[0]

    @pytest.mark.unit
    def test_too_long(self):
        url = "https://example.com/" + "a" * UrlValidator.MAX_LENGTH
        assert not UrlValidator.validate(url)[0]
