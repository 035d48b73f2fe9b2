"""
Webhook signature validation tests.
These protect the authentication boundary for all inbound provider data.
"""
import base64
import hashlib
import hmac
import time

import pytest
from unittest.mock import MagicMock

from src.utils.webhook_signatures import (
    SIGNATURE_TOLERANCE_SECONDS,
    compute_payload_hash,
    validate_daily_signature,
    validate_elevenlabs_signature,
    validate_hmac_sha256,
    validate_webhook_source,
)

BODY = b'{"type": "post_call_transcription"}'


def _request(headers: dict) -> MagicMock:
    req = MagicMock()
    req.headers = headers
    return req


def _elevenlabs_header(secret: str, body: bytes, ts: int) -> str:
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v0={digest}"


class TestValidateHmacSha256:
    def test_valid_hex_digest(self):
        sig = hmac.new(b"secret", BODY, hashlib.sha256).hexdigest()
        assert validate_hmac_sha256("secret", sig, BODY) is True

    def test_prefix_stripped(self):
        sig = hmac.new(b"secret", BODY, hashlib.sha256).hexdigest()
        assert validate_hmac_sha256("secret", f"sha256={sig}", BODY) is True

    def test_tampered_body(self):
        sig = hmac.new(b"secret", BODY, hashlib.sha256).hexdigest()
        assert validate_hmac_sha256("secret", sig, BODY + b" ") is False

    def test_missing_signature(self):
        assert validate_hmac_sha256("secret", "", BODY) is False


class TestValidateElevenLabsSignature:
    def test_valid(self):
        ts = int(time.time())
        header = _elevenlabs_header("el_secret", BODY, ts)
        assert validate_elevenlabs_signature("el_secret", header, BODY) is True

    def test_wrong_secret(self):
        ts = int(time.time())
        header = _elevenlabs_header("other", BODY, ts)
        assert validate_elevenlabs_signature("el_secret", header, BODY) is False

    def test_stale_timestamp_rejected(self):
        ts = int(time.time()) - SIGNATURE_TOLERANCE_SECONDS - 60
        header = _elevenlabs_header("el_secret", BODY, ts)
        assert validate_elevenlabs_signature("el_secret", header, BODY) is False

    def test_explicit_clock(self):
        header = _elevenlabs_header("el_secret", BODY, 1000)
        assert validate_elevenlabs_signature("el_secret", header, BODY, now=1100) is True

    @pytest.mark.parametrize("header", ["", "garbage", "t=abc,v0=00", "v0=00"])
    def test_malformed_header(self, header):
        assert validate_elevenlabs_signature("el_secret", header, BODY) is False


class TestValidateDailySignature:
    SECRET = base64.b64encode(b"daily-key").decode()

    def _sign(self, ts: str, body: bytes) -> str:
        digest = hmac.new(b"daily-key", f"{ts}.".encode() + body, hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def test_valid(self):
        sig = self._sign("1760000000", BODY)
        assert validate_daily_signature(self.SECRET, sig, "1760000000", BODY) is True

    def test_timestamp_is_signed(self):
        sig = self._sign("1760000000", BODY)
        assert validate_daily_signature(self.SECRET, sig, "1760000001", BODY) is False

    def test_missing_timestamp(self):
        sig = self._sign("1760000000", BODY)
        assert validate_daily_signature(self.SECRET, sig, "", BODY) is False

    def test_secret_not_base64(self):
        assert validate_daily_signature("not base64!!", "sig", "1", BODY) is False


class TestComputePayloadHash:
    def test_sha256_hex(self):
        assert compute_payload_hash(BODY) == hashlib.sha256(BODY).hexdigest()

    def test_identical_bodies_match(self):
        assert compute_payload_hash(BODY) == compute_payload_hash(bytes(BODY))


class TestValidateWebhookSource:
    async def test_unsigned_accepted_outside_production(self):
        assert await validate_webhook_source("signwell", _request({}), BODY) is True

    async def test_unsigned_rejected_in_production(self, test_settings):
        test_settings.app_env = "production"
        assert await validate_webhook_source("signwell", _request({}), BODY) is False

    async def test_production_escape_hatch(self, test_settings):
        test_settings.app_env = "production"
        test_settings.allow_unsigned_webhooks = True
        assert await validate_webhook_source("daily", _request({}), BODY) is True

    async def test_signwell_header_checked(self, test_settings):
        test_settings.signwell_webhook_secret = "sw_secret"
        sig = hmac.new(b"sw_secret", BODY, hashlib.sha256).hexdigest()

        assert await validate_webhook_source("signwell", _request({"X-Signwell-Signature": sig}), BODY) is True
        assert await validate_webhook_source("signwell", _request({"X-Signwell-Signature": "bad"}), BODY) is False

    async def test_elevenlabs_header_checked(self, test_settings):
        test_settings.elevenlabs_webhook_secret = "el_secret"
        header = _elevenlabs_header("el_secret", BODY, int(time.time()))

        req = _request({"ElevenLabs-Signature": header})
        assert await validate_webhook_source("elevenlabs", req, BODY) is True

    async def test_daily_headers_checked(self, test_settings):
        test_settings.daily_webhook_secret = base64.b64encode(b"daily-key").decode()
        digest = hmac.new(b"daily-key", b"1760000000." + BODY, hashlib.sha256).digest()

        req = _request({
            "X-Webhook-Signature": base64.b64encode(digest).decode(),
            "X-Webhook-Timestamp": "1760000000",
        })
        assert await validate_webhook_source("daily", req, BODY) is True

    async def test_unknown_source_rejected(self):
        assert await validate_webhook_source("stripe", _request({}), BODY) is False
