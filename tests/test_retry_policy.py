"""
Tests for RetryPolicy — retry eligibility and backoff
"""
import pytest
from hypothesis import given
from hypothesis.strategies import integers, floats

from hookrelay.domain.services.retry_scheduler import RetryPolicy


@pytest.fixture
def policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay=60.0, multiplier=2.0)


class TestShouldRetry:
    @pytest.mark.parametrize("status_code", [500, 502, 503, 504, 599])
    def test_server_errors_retry_below_max(self, policy, status_code):
        assert policy.should_retry(1, status_code)
        assert policy.should_retry(2, status_code)

    def test_network_errors_retry(self, policy):
        assert policy.should_retry(1, None)

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409, 422, 429, 499])
    def test_client_errors_never_retry(self, policy, status_code):
        assert not policy.should_retry(1, status_code)

    def test_last_attempt_not_retried(self, policy):
        assert not policy.should_retry(3, 500)
        assert not policy.should_retry(3, None)
        assert not policy.should_retry(4, 503)

    def test_single_attempt_policy(self):
        assert not RetryPolicy(max_retries=1, base_delay=1.0, multiplier=2.0).should_retry(1, 500)


class TestDelay:
    def test_first_retry_uses_base(self, policy):
        assert policy.delay(2) == 120.0
        assert policy.delay(1) == 60.0
        assert policy.delay(3) == 240.0

    @given(
        n=integers(min_value=1, max_value=20),
        base=floats(min_value=0.01, max_value=1000),
        multiplier=floats(min_value=1.01, max_value=5),
    )
    def test_strictly_increasing(self, n, base, multiplier):
        policy = RetryPolicy(max_retries=5, base_delay=base, multiplier=multiplier)
        assert policy.delay(n + 1) > policy.delay(n)
        assert policy.delay(n + 1) == pytest.approx(multiplier * policy.delay(n))


class TestConstruction:
    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"base_delay": 0},
        {"multiplier": 1.0},
        {"multiplier": 0.5},
    ])
    def test_invalid_values_rejected(self, kwargs):
        params = {"max_retries": 3, "base_delay": 1.0, "multiplier": 2.0, **kwargs}
        with pytest.raises(ValueError):
            RetryPolicy(**params)

    def test_defaults_from_settings(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.base_delay == 60.0
        assert policy.multiplier == 2.0
