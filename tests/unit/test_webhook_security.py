"""Testes do filtro de segurança do webhook (assinatura, frescor, replay)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from sef_sync.application.webhook_security import (
    REASON_EXPIRED,
    REASON_INVALID_SIGNATURE,
    REASON_MISSING_SIGNATURE,
    REASON_MISSING_TIMESTAMP,
    REASON_REPLAY,
    WebhookVerifier,
    compute_signature,
)
from sef_sync.infra.bounded_cache import BoundedTTLCache
from sef_sync.infra.nonce_store import InMemoryNonceStore, NonceStoreError

SECRET = "unit-test-secret"
BODY = json.dumps({"eventType": "ACCEPTANCE", "sefId": "X1"}).encode()


@pytest.fixture()
def verifier(fake_clock) -> WebhookVerifier:
    cache = BoundedTTLCache(10000, 300, clock=fake_clock.monotonic)
    return WebhookVerifier(
        SECRET, InMemoryNonceStore(cache=cache), clock=fake_clock.now
    )


def _headers(fake_clock, body: bytes = BODY, **extra: str) -> dict[str, str]:
    headers = {
        "x-sef-signature": "sha256=" + compute_signature(body, SECRET),
        "x-sef-timestamp": str(int(fake_clock.now().timestamp() * 1000)),
    }
    headers.update(extra)
    return headers


class TestSignature:
    def test_valid_signature(self, verifier, fake_clock):
        result = verifier.verify(BODY, _headers(fake_clock))

        assert result.valid is True
        assert result.skipped is False
        assert result.reason is None

    def test_bare_hex_signature_is_accepted(self, verifier, fake_clock):
        headers = _headers(fake_clock)
        headers["x-sef-signature"] = compute_signature(BODY, SECRET)

        assert verifier.verify(BODY, headers).valid is True

    def test_any_single_byte_change_is_rejected(self, verifier, fake_clock):
        headers = _headers(fake_clock)
        for i in range(len(BODY)):
            tampered = bytearray(BODY)
            tampered[i] ^= 0x01
            result = verifier.verify(bytes(tampered), headers)
            assert result.valid is False
            assert result.reason == REASON_INVALID_SIGNATURE

    def test_signature_with_wrong_secret(self, verifier, fake_clock):
        headers = _headers(fake_clock)
        headers["x-sef-signature"] = compute_signature(BODY, "other-secret")

        assert verifier.verify(BODY, headers).reason == REASON_INVALID_SIGNATURE

    def test_missing_signature(self, verifier, fake_clock):
        headers = _headers(fake_clock)
        del headers["x-sef-signature"]

        assert verifier.verify(BODY, headers).reason == REASON_MISSING_SIGNATURE

    def test_headers_are_case_insensitive(self, verifier, fake_clock):
        headers = {
            "X-SEF-Signature": "sha256=" + compute_signature(BODY, SECRET),
            "X-SEF-Timestamp": str(int(fake_clock.now().timestamp())),
        }

        assert verifier.verify(BODY, headers).valid is True


class TestFreshness:
    def test_missing_timestamp_when_required(self, verifier, fake_clock):
        headers = _headers(fake_clock)
        del headers["x-sef-timestamp"]

        assert verifier.verify(BODY, headers).reason == REASON_MISSING_TIMESTAMP

    def test_missing_timestamp_allowed_when_not_required(self, fake_clock):
        verifier = WebhookVerifier(
            SECRET, InMemoryNonceStore(), require_timestamp=False, clock=fake_clock.now
        )
        headers = _headers(fake_clock)
        del headers["x-sef-timestamp"]

        assert verifier.verify(BODY, headers).valid is True

    @pytest.mark.parametrize("offset_seconds", [-301, 301, -3600])
    def test_timestamp_outside_tolerance_is_expired(self, verifier, fake_clock, offset_seconds):
        sent_ms = int(fake_clock.now().timestamp() * 1000) + offset_seconds * 1000
        headers = _headers(fake_clock, **{"x-sef-timestamp": str(sent_ms)})

        assert verifier.verify(BODY, headers).reason == REASON_EXPIRED

    def test_timestamp_inside_tolerance(self, verifier, fake_clock):
        sent_ms = int(fake_clock.now().timestamp() * 1000) - 299_000
        headers = _headers(fake_clock, **{"x-sef-timestamp": str(sent_ms)})

        assert verifier.verify(BODY, headers).valid is True

    def test_unparseable_timestamp_is_expired(self, verifier, fake_clock):
        headers = _headers(fake_clock, **{"x-sef-timestamp": "yesterday"})

        assert verifier.verify(BODY, headers).reason == REASON_EXPIRED

    def test_timestamp_from_body(self, verifier, fake_clock):
        body = json.dumps(
            {"eventType": "ACCEPTANCE", "sefId": "X1", "timestamp": fake_clock.now().isoformat()}
        ).encode()
        headers = {"x-sef-signature": "sha256=" + compute_signature(body, SECRET)}

        assert verifier.verify(body, headers).valid is True


class TestReplay:
    def test_same_nonce_twice_within_window_is_replay(self, verifier, fake_clock):
        headers = _headers(fake_clock, **{"x-sef-nonce": "nonce-1"})

        assert verifier.verify(BODY, headers).valid is True
        second = verifier.verify(BODY, headers)
        assert second.valid is False
        assert second.reason == REASON_REPLAY

    def test_same_nonce_accepted_after_window(self, verifier, fake_clock):
        assert verifier.verify(BODY, _headers(fake_clock, **{"x-sef-nonce": "n1"})).valid

        fake_clock.advance(301)

        result = verifier.verify(BODY, _headers(fake_clock, **{"x-sef-nonce": "n1"}))
        assert result.valid is True

    def test_nonce_from_body(self, verifier, fake_clock):
        body = json.dumps({"eventType": "ACCEPTANCE", "sefId": "X1", "nonce": "body-n"}).encode()
        headers = _headers(fake_clock, body=body)

        assert verifier.verify(body, headers).valid is True
        assert verifier.verify(body, headers).reason == REASON_REPLAY

    def test_forged_request_does_not_consume_nonce(self, verifier, fake_clock):
        forged = _headers(fake_clock, **{"x-sef-nonce": "n1"})
        forged["x-sef-signature"] = "sha256=" + "0" * 64

        assert verifier.verify(BODY, forged).reason == REASON_INVALID_SIGNATURE
        assert verifier.verify(BODY, _headers(fake_clock, **{"x-sef-nonce": "n1"})).valid

    def test_nonce_store_failure_propagates(self, fake_clock):
        store = MagicMock()
        store.mark_if_new.side_effect = NonceStoreError("down")
        verifier = WebhookVerifier(SECRET, store, clock=fake_clock.now)

        with pytest.raises(NonceStoreError):
            verifier.verify(BODY, _headers(fake_clock, **{"x-sef-nonce": "n1"}))

    def test_released_nonce_allows_redelivery(self, verifier, fake_clock):
        headers = _headers(fake_clock, **{"x-sef-nonce": "n1"})
        first = verifier.verify(BODY, headers)
        assert first.nonce == "n1"

        verifier.release(first)

        assert verifier.verify(BODY, headers).valid is True

    def test_release_without_nonce_is_noop(self, fake_clock):
        store = MagicMock()
        verifier = WebhookVerifier(SECRET, store, clock=fake_clock.now)

        result = verifier.verify(BODY, _headers(fake_clock))
        verifier.release(result)

        assert result.nonce is None
        store.release.assert_not_called()

    def test_release_failure_is_logged_not_raised(self, fake_clock, caplog):
        store = MagicMock()
        store.mark_if_new.return_value = True
        store.release.side_effect = NonceStoreError("down")
        verifier = WebhookVerifier(SECRET, store, clock=fake_clock.now)
        result = verifier.verify(BODY, _headers(fake_clock, **{"x-sef-nonce": "n1"}))

        verifier.release(result)

        assert any(r.message == "webhook_nonce_release_failed" for r in caplog.records)


def test_relaxed_mode_without_secret(fake_clock):
    verifier = WebhookVerifier(None, InMemoryNonceStore(), clock=fake_clock.now)

    result = verifier.verify(BODY, {})

    assert verifier.enabled is False
    assert result.valid is True
    assert result.skipped is True
