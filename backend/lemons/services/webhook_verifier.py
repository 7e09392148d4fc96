"""Webhook signature verification against an ordered list of secrets"""
import json
import logging
from typing import List, Optional, Sequence

import stripe
from pydantic import ValidationError

from lemons.core.errors import AuthenticationFailure
from lemons.schemas.events import StripeEventEnvelope

security_logger = logging.getLogger("security")
reconciliation_logger = logging.getLogger("reconciliation")


class SignatureVerifier:
    """Authenticates a webhook body against candidate signing secrets.

    One endpoint receives events from two Stripe producers (platform billing
    and connected accounts), each signed with its own secret. Secrets are
    tried in order and the first that verifies wins.
    """

    def __init__(self, secrets: Sequence[str], tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.secrets: List[str] = [s for s in secrets if s]
        self.tolerance = tolerance

    def matching_secret_index(self, payload: bytes, sig_header: Optional[str]) -> Optional[int]:
        """Index of the first secret that verifies the payload, or None"""
        if not sig_header:
            return None
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        for index, secret in enumerate(self.secrets):
            try:
                stripe.WebhookSignature.verify_header(body, sig_header, secret, self.tolerance)
                return index
            except stripe.SignatureVerificationError:
                continue
        return None

    def verify(self, payload: bytes, sig_header: Optional[str]) -> Optional[StripeEventEnvelope]:
        """Verify and decode the event envelope.

        Returns:
            The envelope, or None when the body verifies but is not an event
            envelope (acknowledged as unhandled by the caller)

        Raises:
            AuthenticationFailure: no secret configured, missing header, or
                no secret verifies
        """
        if not self.secrets:
            security_logger.error("Webhook received but no signing secret is configured")
            raise AuthenticationFailure("Webhook secret not configured")
        if not sig_header:
            security_logger.warning("Webhook rejected: missing stripe-signature header")
            raise AuthenticationFailure("Missing stripe-signature header")

        try:
            index = self.matching_secret_index(payload, sig_header)
        except UnicodeDecodeError:
            index = None
        if index is None:
            security_logger.warning("Webhook rejected: signature did not verify against any configured secret")
            raise AuthenticationFailure("Invalid signature")

        try:
            return StripeEventEnvelope.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            # Authentic but undecodable; redelivery would never change it
            reconciliation_logger.warning(f"Verified webhook body is not an event envelope: {e}")
            return None
