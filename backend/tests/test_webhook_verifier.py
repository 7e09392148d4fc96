"""Webhook signature verification tests"""
import json
import logging
import time

import pytest

from lemons.core.errors import AuthenticationFailure
from lemons.services.webhook_verifier import SignatureVerifier

from conftest import BILLING_SECRET, CONNECT_SECRET, make_event, sign_payload


@pytest.mark.critical
class TestSignatureVerifier:
    """Signed bodies are accepted for any configured secret and rejected otherwise"""

    def setup_method(self):
        self.verifier = SignatureVerifier([BILLING_SECRET, CONNECT_SECRET], tolerance=300)
        self.payload = json.dumps(make_event("account.updated", {"id": "acct_1"}, event_id="evt_sig"))

    @pytest.mark.parametrize("secret,index", [(BILLING_SECRET, 0), (CONNECT_SECRET, 1)])
    def test_accepts_any_configured_secret(self, secret, index):
        header = sign_payload(self.payload, secret)

        assert self.verifier.matching_secret_index(self.payload.encode(), header) == index
        envelope = self.verifier.verify(self.payload.encode(), header)
        assert envelope.id == "evt_sig"
        assert envelope.type == "account.updated"

    def test_first_matching_secret_wins_when_secrets_repeat(self):
        verifier = SignatureVerifier([CONNECT_SECRET, CONNECT_SECRET])
        header = sign_payload(self.payload, CONNECT_SECRET)
        assert verifier.matching_secret_index(self.payload.encode(), header) == 0

    def test_rejects_unknown_secret(self):
        header = sign_payload(self.payload, "whsec_someone_else")
        with pytest.raises(AuthenticationFailure):
            self.verifier.verify(self.payload.encode(), header)

    def test_rejects_tampered_body(self):
        header = sign_payload(self.payload, BILLING_SECRET)
        tampered = self.payload.replace("acct_1", "acct_2")
        with pytest.raises(AuthenticationFailure):
            self.verifier.verify(tampered.encode(), header)

    def test_rejects_missing_header(self):
        with pytest.raises(AuthenticationFailure):
            self.verifier.verify(self.payload.encode(), None)

    def test_rejects_expired_timestamp(self):
        header = sign_payload(self.payload, BILLING_SECRET, timestamp=int(time.time()) - 3600)
        with pytest.raises(AuthenticationFailure):
            self.verifier.verify(self.payload.encode(), header)

    def test_rejects_when_no_secret_configured(self):
        verifier = SignatureVerifier(["", ""])
        header = sign_payload(self.payload, BILLING_SECRET)
        with pytest.raises(AuthenticationFailure):
            verifier.verify(self.payload.encode(), header)

    def test_signed_body_that_is_not_an_event_decodes_to_none(self, caplog):
        payload = json.dumps({"hello": "world"})
        header = sign_payload(payload, BILLING_SECRET)
        with caplog.at_level(logging.WARNING, logger="reconciliation"):
            assert self.verifier.verify(payload.encode(), header) is None
        assert "not an event envelope" in caplog.text

    def test_rejects_non_utf8_body(self):
        with pytest.raises(AuthenticationFailure):
            self.verifier.verify(b"\xff\xfe\x00", "t=1,v1=abc")
