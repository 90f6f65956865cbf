"""
agent-escrow error types.

Ledger calls fail fast: one attempt, then a ``TransportError`` subclass
reaches the caller, who decides whether to retry. Inside the monitor an
error is scoped to the payment being refreshed and surfaces as a
``monitor_error`` event instead of being raised.
"""


class EscrowError(Exception):
    """Base error for all agent-escrow operations."""
    pass


class NotProvisionedError(EscrowError):
    """No agent identity (or seller key) is configured for this call."""
    pass


class UnknownPaymentError(EscrowError):
    """Operation references a payment the local store has never seen."""
    def __init__(self, blockchain_identifier: str):
        self.blockchain_identifier = blockchain_identifier
        super().__init__(
            f"Payment not found: {blockchain_identifier}. "
            "Refresh its status first or create it through this engine."
        )


class ValidationError(EscrowError):
    """Malformed parameters or unparseable payloads."""
    pass


class EngineClosedError(EscrowError):
    """The engine was closed and no longer accepts operations."""
    pass


# Transport errors
class TransportError(EscrowError):
    """Remote ledger call failed (network, timeout, non-2xx)."""
    pass


class LedgerTimeoutError(TransportError):
    """Remote ledger call timed out."""
    pass


class RemoteRejectedError(TransportError):
    """Remote ledger answered with a non-2xx status."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Ledger rejected request ({status_code}): {message}")
