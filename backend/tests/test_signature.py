"""Stripe webhook signature verification tests"""
import pytest
from unittest.mock import patch

from billing_webhooks.core.exceptions import InvalidSignature
from billing_webhooks.services.signature import (
    build_signature_header, compute_signature, verify_signature
)

SECRET = "whsec_unit_test"
PAYLOAD = b'{"id": "evt_sig", "type": "invoice.payment_succeeded", "data": {"object": {}}}'
NOW = 1760000000


@pytest.fixture
def frozen_time():
    """Pin the clock Stripe's verifier reads"""
    def _freeze(at=NOW):
        return patch("time.time", return_value=at)
    return _freeze


@pytest.mark.critical
class TestVerifySignature:
    """Test HMAC verification and freshness window"""

    def test_valid_signature_is_accepted(self, frozen_time):
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        with frozen_time():
            assert verify_signature(PAYLOAD, header, SECRET) is True

    def test_signature_at_tolerance_boundary_is_accepted(self, frozen_time):
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        with frozen_time(NOW + 300):
            assert verify_signature(PAYLOAD, header, SECRET, tolerance=300) is True

    def test_stale_timestamp_rejected_even_with_correct_hmac(self, frozen_time):
        """A replayed delivery older than 300s is rejected although the HMAC matches"""
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        with frozen_time(NOW + 301):
            with pytest.raises(InvalidSignature, match="tolerance"):
                verify_signature(PAYLOAD, header, SECRET, tolerance=300)

    def test_wrong_secret_rejected(self, frozen_time):
        header = build_signature_header(PAYLOAD, "whsec_other", timestamp=NOW)
        with frozen_time():
            with pytest.raises(InvalidSignature, match="expected signature"):
                verify_signature(PAYLOAD, header, SECRET)

    def test_tampered_payload_rejected(self, frozen_time):
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        with frozen_time():
            with pytest.raises(InvalidSignature):
                verify_signature(PAYLOAD.replace(b"evt_sig", b"evt_forged"), header, SECRET)

    def test_reserialized_json_rejected(self, frozen_time):
        """Whitespace changes break the signature, so the raw body must be verified"""
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        with frozen_time():
            with pytest.raises(InvalidSignature):
                verify_signature(PAYLOAD.replace(b": ", b":"), header, SECRET)

    @pytest.mark.parametrize("header", [None, "", "garbage", f"t={NOW}", "v1=abcdef", f"t={NOW},v0=abcdef"])
    def test_incomplete_header_rejected(self, frozen_time, header):
        with frozen_time():
            with pytest.raises(InvalidSignature):
                verify_signature(PAYLOAD, header, SECRET)

    def test_non_integer_timestamp_rejected(self, frozen_time):
        signature = compute_signature(PAYLOAD, NOW, SECRET)
        with frozen_time():
            with pytest.raises(InvalidSignature, match="timestamp"):
                verify_signature(PAYLOAD, f"t=yesterday,v1={signature}", SECRET)

    def test_any_matching_v1_signature_is_accepted(self, frozen_time):
        """During secret rotation Stripe sends one v1 per active secret"""
        good = compute_signature(PAYLOAD, NOW, SECRET)
        header = f"t={NOW},v1={'0' * 64},v1={good}"
        with frozen_time():
            assert verify_signature(PAYLOAD, header, SECRET) is True

    def test_non_utf8_body_rejected(self, frozen_time):
        payload = b"\xff\xfe not json"
        header = build_signature_header(payload, SECRET, timestamp=NOW)
        with frozen_time():
            with pytest.raises(InvalidSignature, match="UTF-8"):
                verify_signature(payload, header, SECRET)


@pytest.mark.high
class TestSignatureHeader:
    """Test header building"""

    def test_build_matches_compute(self):
        header = build_signature_header(PAYLOAD, SECRET, timestamp=NOW)
        assert header == f"t={NOW},v1={compute_signature(PAYLOAD, NOW, SECRET)}"

    def test_build_defaults_to_current_time(self, frozen_time):
        with frozen_time():
            header = build_signature_header(PAYLOAD, SECRET)
        assert header.startswith(f"t={NOW},v1=")

    def test_compute_signature_is_hex_sha256(self):
        signature = compute_signature(PAYLOAD, NOW, SECRET)
        assert len(signature) == 64
        int(signature, 16)
