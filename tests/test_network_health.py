"""
Unit tests for the fetch circuit breaker.
"""

import asyncio

import pytest
from ytdeck import network_health
from ytdeck.network_health import NetworkHealth, NetworkState


async def fail(health, times=1, error_type="test"):
    for i in range(times):
        await health.record_failure(Exception(f"error {i}"), error_type)


class TestBackoffDelay:
    def test_no_failures_no_wait(self):
        assert network_health.backoff_delay(0) == 0.0

    def test_doubles_per_failure(self):
        delays = [network_health.backoff_delay(i, base_sec=2.0) for i in range(1, 6)]
        assert delays == [2.0, 4.0, 8.0, 16.0, 32.0]

    def test_capped(self):
        assert network_health.backoff_delay(100, base_sec=2.0, max_sec=60.0) == 60.0


class TestClassifyError:
    def test_timeout(self):
        assert network_health.classify_error(asyncio.TimeoutError()) == "timeout"

    def test_dns_by_message(self):
        assert network_health.classify_error(OSError("Temporary failure in name resolution")) == "dns"
        assert network_health.is_dns_error(Exception("nodename nor servname provided, or not known"))

    def test_dns_by_type_name(self):
        class ClientConnectorDNSError(OSError):
            pass

        assert network_health.is_dns_error(ClientConnectorDNSError("cannot connect"))

    def test_http_status(self):
        """Errors carrying a status code are HTTP failures."""
        error = Exception("Too Many Requests")
        error.status = 429
        assert network_health.classify_error(error) == "http"

    def test_other(self):
        assert not network_health.is_dns_error(ConnectionResetError("reset"))
        assert network_health.classify_error(ConnectionResetError("reset")) == "network"


@pytest.mark.asyncio
class TestBreakerState:
    async def test_starts_ok(self):
        health = NetworkHealth()
        assert health.state == NetworkState.OK
        assert await health.allow_request()

    async def test_degraded_after_two_failures(self):
        health = NetworkHealth()

        await fail(health)
        assert health.state == NetworkState.OK
        await fail(health)
        assert health.state == NetworkState.DEGRADED
        # Degraded still lets requests through
        assert await health.allow_request()

    async def test_offline_at_threshold(self):
        health = NetworkHealth(fail_threshold=3, fail_window_sec=10.0)

        await fail(health, 3)

        assert health.state == NetworkState.OFFLINE

    async def test_old_failures_leave_the_window(self):
        health = NetworkHealth(fail_threshold=3, fail_window_sec=0.2)

        await fail(health, 2)
        await asyncio.sleep(0.3)
        await fail(health)

        assert health.state == NetworkState.DEGRADED
        assert health.counters.consecutive_failures == 3

    async def test_success_resets(self):
        health = NetworkHealth(backoff_base_sec=60.0, fail_threshold=2)
        await fail(health, 2)

        await health.record_success()

        assert health.state == NetworkState.OK
        assert health.counters.consecutive_failures == 0
        assert health.counters.total_successes == 1
        assert await health.allow_request()

    async def test_empty_error_message_uses_type_name(self):
        health = NetworkHealth()

        await health.record_failure(asyncio.TimeoutError(), "timeout")

        assert health.counters.last_failure_message == "TimeoutError"


@pytest.mark.asyncio
class TestHalfOpen:
    async def test_refused_during_backoff(self):
        health = NetworkHealth(backoff_base_sec=60.0, fail_threshold=2)
        await fail(health, 2)

        assert not await health.allow_request()

    async def test_single_request_after_backoff(self):
        health = NetworkHealth(backoff_base_sec=0.05, fail_threshold=2)
        await fail(health, 2)
        # 2 failures in a row -> 0.05 * 2 = 0.1s
        await asyncio.sleep(0.15)

        results = await asyncio.gather(*(health.allow_request() for _ in range(3)))

        assert sorted(results) == [False, False, True]

    async def test_failed_trial_restarts_wait(self):
        health = NetworkHealth(backoff_base_sec=0.05, fail_threshold=2)
        await fail(health, 2)
        await asyncio.sleep(0.15)
        assert await health.allow_request()

        await fail(health)

        assert health.state == NetworkState.OFFLINE
        assert not await health.allow_request()

    async def test_abandoned_trial_frees_the_slot(self):
        health = NetworkHealth(backoff_base_sec=0.05, fail_threshold=2)
        await fail(health, 2)
        await asyncio.sleep(0.15)
        assert await health.allow_request()
        assert not await health.allow_request()

        health.abandon_trial()

        assert await health.allow_request()


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_diagnostics(self):
        health = NetworkHealth()

        await health.record_failure(Exception("test error"), "dns")
        await health.record_success()
        await health.record_failure(Exception("other error"), "timeout")

        diagnostics = health.get_diagnostics()

        assert diagnostics["state"] == "ok"
        assert diagnostics["consecutive_failures"] == 1
        assert diagnostics["total_failures"] == 2
        assert diagnostics["total_successes"] == 1
        assert diagnostics["last_failure"] == "other error"
        assert diagnostics["recent_failure_types"] == {"dns": 1, "timeout": 1}
        assert "seconds_since_success" in diagnostics

    def test_fresh_diagnostics(self):
        diagnostics = NetworkHealth().get_diagnostics()

        assert diagnostics == {
            "state": "ok",
            "consecutive_failures": 0,
            "total_failures": 0,
            "total_successes": 0,
        }
