"""Tests for webhook signature verification."""

import pytest

from storefront.domain.exceptions import InvalidSignatureError
from storefront.infrastructure.signatures import compute_signature, sign_payload, verify_signature

SECRET = "whsec_test_secret"
BODY = b'{"id": "evt_1", "type": "checkout.session.completed"}'
SIGNED_AT = 1_800_000_000


class TestVerifySignature:
    def test_valid_signature_returns_timestamp(self):
        header = sign_payload(SECRET, BODY, timestamp=SIGNED_AT)
        assert verify_signature(BODY, header, SECRET, now=SIGNED_AT + 10) == SIGNED_AT

    def test_any_matching_v1_is_accepted(self):
        good = compute_signature(SECRET, SIGNED_AT, BODY)
        header = f"t={SIGNED_AT},v1=deadbeef,v1={good}"
        assert verify_signature(BODY, header, SECRET, now=SIGNED_AT)

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header(self, header):
        with pytest.raises(InvalidSignatureError, match="No signature provided"):
            verify_signature(BODY, header, SECRET)

    def test_unconfigured_secret(self):
        with pytest.raises(InvalidSignatureError, match="not configured"):
            verify_signature(BODY, sign_payload(SECRET, BODY), "")

    @pytest.mark.parametrize("header", ["garbage", "t=abc,v1=00", f"t={SIGNED_AT}"])
    def test_malformed_header(self, header):
        with pytest.raises(InvalidSignatureError, match="Malformed"):
            verify_signature(BODY, header, SECRET, now=SIGNED_AT)

    def test_wrong_secret(self):
        header = sign_payload("whsec_other", BODY, timestamp=SIGNED_AT)
        with pytest.raises(InvalidSignatureError, match="Signature mismatch"):
            verify_signature(BODY, header, SECRET, now=SIGNED_AT)

    def test_tampered_body(self):
        header = sign_payload(SECRET, BODY, timestamp=SIGNED_AT)
        with pytest.raises(InvalidSignatureError, match="Signature mismatch"):
            verify_signature(BODY.replace(b"evt_1", b"evt_2"), header, SECRET, now=SIGNED_AT)

    def test_stale_timestamp(self):
        header = sign_payload(SECRET, BODY, timestamp=SIGNED_AT)
        with pytest.raises(InvalidSignatureError, match="tolerance"):
            verify_signature(BODY, header, SECRET, tolerance_seconds=300, now=SIGNED_AT + 301)
