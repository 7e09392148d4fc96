"""Domain errors for the payment reconciliation layer.

Every error carries the HTTP status it maps to and a short machine-readable
``code``; the API layer renders them as ``{"error": ..., "code": ...}``.
"""
from typing import Optional


class LemonsError(Exception):
    """Base class for errors surfaced to API callers"""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class AuthenticationFailure(LemonsError):
    """Webhook signature did not verify against any configured secret"""
    status_code = 400
    code = "invalid_signature"


class CorrelationMissing(LemonsError):
    """Event payload lacks the metadata needed to find its local entity.

    Acknowledged with 200 by the webhook pipeline: the event can never
    succeed, so rejecting it would only cause endless redelivery.
    """
    status_code = 200
    code = "correlation_missing"


class UpstreamUnavailable(LemonsError):
    """The payments provider failed a call we depend on"""
    status_code = 503
    code = "upstream_unavailable"


class PartialFailure(LemonsError):
    """An external resource was created but could not be stored locally"""
    status_code = 500
    code = "partial_failure"

    def __init__(self, message: Optional[str] = None, external_id: Optional[str] = None):
        super().__init__(message)
        self.external_id = external_id


class SellerNotConnected(LemonsError):
    """Seller is not yet connected to Stripe"""
    status_code = 409
    code = "seller_not_connected"


class SellerNotReady(LemonsError):
    """Seller is not ready to accept payments yet"""
    status_code = 409
    code = "seller_not_ready"


class NotFound(LemonsError):
    status_code = 404
    code = "not_found"


class InvalidRequest(LemonsError):
    status_code = 400
    code = "invalid_request"


class Conflict(LemonsError):
    status_code = 409
    code = "conflict"


class Forbidden(LemonsError):
    status_code = 403
    code = "forbidden"
