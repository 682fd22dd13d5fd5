"""
Tests for the chainhook payload gate: rate limit, bearer auth, JSON and batch structure.
"""
import json

import pytest
from starlette.requests import Request

from bitpay_ingest.core.exceptions import (
    InvalidPayloadError,
    RateLimitExceededError,
    WebhookNotConfiguredError,
    WebhookUnauthorizedError,
)
from bitpay_ingest.core.rate_limit import SlidingWindowRateLimiter
from bitpay_ingest.ingest.gate import DEFAULT_IDENTITY, PayloadGate, client_identity
from tests.chainhook_payloads import batch, block, print_event, stream_created, transaction


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.5", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/webhooks/chainhook/streams",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestClientIdentity:

    @pytest.mark.unit
    def test_first_forwarded_hop_wins(self):
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert client_identity(request) == "203.0.113.7"

    @pytest.mark.unit
    def test_socket_peer_without_forwarded_header(self):
        assert client_identity(_request()) == "10.0.0.5"

    @pytest.mark.unit
    def test_shared_bucket_without_any_address(self):
        assert client_identity(_request(client=None)) == DEFAULT_IDENTITY


class TestAuthenticate:

    @pytest.mark.unit
    def test_valid_bearer_token(self):
        PayloadGate(secret_token="s3cret").authenticate("Bearer s3cret")

    @pytest.mark.unit
    def test_scheme_is_case_insensitive(self):
        PayloadGate(secret_token="s3cret").authenticate("bearer s3cret")

    @pytest.mark.unit
    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer wrong", "Basic s3cret", "s3cret"])
    def test_rejects_missing_or_wrong_token(self, header):
        with pytest.raises(WebhookUnauthorizedError):
            PayloadGate(secret_token="s3cret").authenticate(header)

    @pytest.mark.unit
    def test_unconfigured_secret_rejects_everything(self):
        gate = PayloadGate(secret_token="")
        with pytest.raises(WebhookNotConfiguredError) as exc_info:
            gate.authenticate("Bearer anything")
        assert exc_info.value.status_code == 401


class TestParse:

    @pytest.mark.unit
    def test_invalid_json(self):
        with pytest.raises(InvalidPayloadError) as exc_info:
            PayloadGate.parse(b"{not json")
        assert exc_info.value.message == "Invalid JSON body"
        assert exc_info.value.status_code == 400

    @pytest.mark.unit
    @pytest.mark.parametrize("document", [
        [],
        "apply",
        {},
        {"apply": {"block": 1}},
        {"rollback": "nope"},
        {"apply": [{"block_identifier": {"index": 1}}]},
    ])
    def test_invalid_structure(self, document):
        with pytest.raises(InvalidPayloadError) as exc_info:
            PayloadGate.parse(json.dumps(document).encode())
        assert exc_info.value.message == "Invalid payload structure"

    @pytest.mark.unit
    def test_empty_lists_are_a_valid_batch(self):
        parsed = PayloadGate.parse(b'{"apply": [], "rollback": []}')
        assert parsed.apply == [] and parsed.rollback == []

    @pytest.mark.unit
    def test_rollback_only_batch(self):
        parsed = PayloadGate.parse(json.dumps({"rollback": [block(5)]}).encode())
        assert parsed.apply == []
        assert [b.index for b in parsed.rollback] == [5]

    @pytest.mark.unit
    def test_unknown_fields_are_ignored(self):
        document = batch(apply=[block(3, transaction(print_event(stream_created())))], uuid="hook-1")
        document["apply"][0]["metadata"] = {"pox_cycle_index": 9}
        parsed = PayloadGate.parse(json.dumps(document).encode())
        assert parsed.delivery_id == "hook-1"
        assert parsed.apply[0].transactions[0].metadata.success is True


class TestRateLimit:

    @pytest.mark.unit
    def test_limit_per_identity(self):
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
        gate = PayloadGate(secret_token="s3cret", rate_limiter=limiter)

        gate.check_rate_limit("1.1.1.1")
        gate.check_rate_limit("1.1.1.1")
        with pytest.raises(RateLimitExceededError) as exc_info:
            gate.check_rate_limit("1.1.1.1")

        assert exc_info.value.status_code == 429
        assert int(exc_info.value.headers["Retry-After"]) >= 1
        # another identity has its own window
        gate.check_rate_limit("2.2.2.2")


class TestGateOverHttp:
    """Check order through the real endpoint: rate limit, auth, JSON, structure."""

    URL = "/api/webhooks/chainhook/streams"

    @pytest.mark.integration
    async def test_missing_token_is_401(self, test_client):
        response = await test_client.post(self.URL, json=batch())
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    @pytest.mark.integration
    async def test_auth_checked_before_json(self, test_client):
        response = await test_client.post(
            self.URL,
            content=b"{broken",
            headers={"Authorization": "Bearer wrong", "Content-Type": "application/json"},
        )
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_bad_json_with_valid_token_is_400(self, test_client, auth_headers):
        response = await test_client.post(
            self.URL,
            content=b"{broken",
            headers={**auth_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    @pytest.mark.integration
    async def test_bad_structure_is_400(self, test_client, auth_headers):
        response = await test_client.post(self.URL, json={"apply": "x"}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payload structure"

    @pytest.mark.integration
    async def test_rate_limit_checked_before_auth(self, test_client, auth_headers):
        from bitpay_ingest.core.rate_limit import webhook_rate_limiter

        headers = {"X-Forwarded-For": "198.51.100.9"}
        for _ in range(webhook_rate_limiter.max_requests):
            webhook_rate_limiter.hit("198.51.100.9")

        response = await test_client.post(self.URL, json=batch(), headers=headers)
        assert response.status_code == 429
        assert "Retry-After" in response.headers

        # a different client is unaffected
        response = await test_client.post(
            self.URL, json=batch(), headers={**auth_headers, "X-Forwarded-For": "198.51.100.10"},
        )
        assert response.status_code == 200

    @pytest.mark.integration
    async def test_empty_batch_is_processed(self, test_client, auth_headers):
        response = await test_client.post(self.URL, json=batch(), headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"success": True, "eventType": "stream-events", "processed": 0}
