"""
Billing error taxonomy.

Only AuthenticationFailure, NotFound and Conflict reach a caller.
Duplicate and stale events are not errors at all; see
academie.billing.transitions.Outcome.
"""


class BillingError(Exception):
    """Base exception for billing errors."""


class AuthenticationFailure(BillingError):
    """Webhook signature or shared secret did not verify."""


class NotFound(BillingError):
    """A referenced account or processor object does not exist."""


class AccountNotFound(NotFound):
    pass


class ProcessorObjectNotFound(NotFound):
    pass


class Conflict(BillingError):
    """The operation would attach an identity another account owns."""


class ProcessorError(BillingError):
    """A Stripe or Hotmart API call failed."""


class UpstreamSideEffectFailure(ProcessorError):
    """A best-effort processor side effect failed after the local change."""


class InvalidRequest(BillingError):
    """The request cannot be carried out as asked (bad price, unpaid intent)."""
