"""Unit tests for mail transports and the circuit breaker."""

import asyncio
import json

import httpx
import pytest
import respx

from orderflow.config import Settings
from orderflow.core import ConfigurationException
from orderflow.sla.infrastructure import (
    CircuitBreaker,
    CircuitState,
    NullMailTransport,
    RelayMailTransport,
    SMTPMailTransport,
    build_mail_transport,
)

RELAY_URL = "https://mail-relay.example.com/v1/send"


class HangingClient:
    """Stands in for the relay HTTP client when the relay never answers."""

    async def post(self, url, json=None):
        await asyncio.sleep(60)

    async def aclose(self):
        pass


class FakeMonotonic:

    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


@pytest.mark.unit
class TestCircuitBreaker:

    @pytest.fixture
    def ticker(self):
        return FakeMonotonic()

    @pytest.fixture
    def breaker(self, ticker):
        return CircuitBreaker(failure_threshold=2, recovery_timeout=30, time_source=ticker)

    def test_opens_after_threshold(self, breaker):
        breaker.record_failure()
        assert breaker.allow_request()

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()

    def test_half_open_after_recovery_timeout(self, breaker, ticker):
        breaker.record_failure()
        breaker.record_failure()
        ticker.value += 30

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.allow_request()

    def test_failure_in_half_open_reopens(self, breaker, ticker):
        breaker.record_failure()
        breaker.record_failure()
        ticker.value += 31
        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN

    def test_success_closes(self, breaker, ticker):
        breaker.record_failure()
        breaker.record_failure()
        ticker.value += 31

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED


@pytest.mark.unit
class TestRelayMailTransport:

    @pytest.fixture
    async def relay(self):
        transport = RelayMailTransport(
            relay_url=RELAY_URL,
            sender_email="alerts@example.com",
            max_retries=3,
            retry_backoff_seconds=0,
        )
        yield transport
        await transport.close()

    @respx.mock
    async def test_accepted_message(self, relay):
        route = respx.post(RELAY_URL).mock(return_value=httpx.Response(202, json={"id": "msg-1"}))

        result = await relay.send(["ops@example.com"], "[NEXUS] SLA Breach: LOGGED - ORD-1", "Dear Team,\nbody")

        assert result.ok
        payload = json.loads(route.calls.last.request.content)
        assert payload["to"] == ["ops@example.com"]
        assert payload["from"] == {"name": "Nexus System Alert", "email": "alerts@example.com"}
        assert payload["subject"] == "[NEXUS] SLA Breach: LOGGED - ORD-1"
        assert payload["html"] == "Dear Team,<br>body"

    @respx.mock
    async def test_server_errors_are_retried_then_reported(self, relay):
        route = respx.post(RELAY_URL).mock(return_value=httpx.Response(503))

        result = await relay.send(["ops@example.com"], "subject", "body")

        assert not result.ok
        assert result.error == "relay returned HTTP 503"
        assert route.call_count == 3

    @respx.mock
    async def test_recovers_on_retry(self, relay):
        respx.post(RELAY_URL).mock(side_effect=[httpx.Response(502), httpx.Response(200)])

        result = await relay.send(["ops@example.com"], "subject", "body")

        assert result.ok

    @respx.mock
    async def test_connection_error(self, relay):
        respx.post(RELAY_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        result = await relay.send(["ops@example.com"], "subject", "body")

        assert not result.ok
        assert "connection refused" in result.error

    @respx.mock
    async def test_open_circuit_skips_request(self, relay):
        route = respx.post(RELAY_URL).mock(return_value=httpx.Response(500))
        for _ in range(5):
            await relay.send(["ops@example.com"], "subject", "body")
        calls = route.call_count

        result = await relay.send(["ops@example.com"], "subject", "body")

        assert result.error == "circuit open"
        assert route.call_count == calls


    async def test_hung_relay_times_out_within_budget_and_opens_circuit(self):
        relay = RelayMailTransport(relay_url=RELAY_URL, budget_seconds=0.02)
        relay._http_client = HangingClient()

        results = [await relay.send(["ops@example.com"], "subject", "body") for _ in range(5)]

        assert all(not r.ok for r in results)
        assert results[0].error == "relay timed out after 0.02s"
        assert relay._circuit_breaker.state == CircuitState.OPEN
        assert (await relay.send(["ops@example.com"], "subject", "body")).error == "circuit open"

    async def test_cancelled_send_counts_as_failure(self):
        relay = RelayMailTransport(relay_url=RELAY_URL)
        relay._http_client = HangingClient()

        for _ in range(5):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(relay.send(["ops@example.com"], "subject", "body"), timeout=0.01)

        assert relay._circuit_breaker.state == CircuitState.OPEN


@pytest.mark.unit
class TestOtherTransports:

    def test_smtp_message_has_html_alternative(self):
        transport = SMTPMailTransport(host="smtp.example.com", port=465, sender_email="alerts@example.com")

        message = transport.build_message(["a@example.com", "b@example.com"], "subject", "line one\nline <two>")

        assert message["To"] == "a@example.com, b@example.com"
        assert message["From"] == "Nexus System Alert <alerts@example.com>"
        html = message.get_body(preferencelist=("html",)).get_content()
        assert "line one<br>line &lt;two&gt;" in html

    async def test_disabled_transport_never_succeeds(self):
        result = await NullMailTransport().send(["a@example.com"], "subject", "body")

        assert not result.ok


@pytest.mark.unit
class TestBuildMailTransport:

    def test_disabled(self):
        assert isinstance(build_mail_transport(Settings(mail_transport="disabled")), NullMailTransport)

    def test_relay(self):
        transport = build_mail_transport(Settings(mail_transport="relay", mail_relay_url=RELAY_URL))

        assert isinstance(transport, RelayMailTransport)
        assert transport.relay_url == RELAY_URL

    def test_relay_budget_fits_inside_dispatch_timeout(self):
        settings = Settings(mail_transport="relay", mail_relay_url=RELAY_URL, dispatch_timeout_seconds=10)

        transport = build_mail_transport(settings)

        assert transport.budget_seconds < settings.dispatch_timeout_seconds
        assert transport.timeout_seconds * transport.max_retries == pytest.approx(transport.budget_seconds)

    def test_relay_without_url(self):
        with pytest.raises(ConfigurationException):
            build_mail_transport(Settings(mail_transport="relay", mail_relay_url=None))

    def test_smtp_without_host(self):
        with pytest.raises(ConfigurationException):
            build_mail_transport(Settings(mail_transport="smtp", smtp_host=None))

    def test_unknown_transport_is_rejected(self):
        with pytest.raises(ValueError):
            Settings(mail_transport="carrier-pigeon")
