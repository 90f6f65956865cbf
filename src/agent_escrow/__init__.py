"""
agent-escrow — Escrow payment lifecycle for autonomous agents.

Agent quotes work → purchaser locks funds → agent submits a result hash →
funds are released. Inputs and outputs never leave the agent, only their
canonical hashes do.
"""

__version__ = "0.1.0"

from .config import AgentIdentity, EscrowConfig, Network
from .engine import PaymentLifecycleEngine
from .errors import (
    EngineClosedError,
    EscrowError,
    LedgerTimeoutError,
    NotProvisionedError,
    RemoteRejectedError,
    TransportError,
    UnknownPaymentError,
    ValidationError,
)
from .events import (
    EventEmitter,
    EventType,
    MonitorError,
    RefundAuthorized,
    ResultSubmitted,
    StateChange,
)
from .hashing import (
    canonical_json,
    compute_hash,
    generate_purchaser_identifier,
    input_hash,
    result_hash,
)
from .ledger_client import HttpLedgerClient, LedgerClient
from .models import OnChainState, PaymentPage, PaymentRequest, TERMINAL_STATES, WalletBalance
from .monitor import MonitorScheduler
from .store import PaymentStore

__all__ = [
    "PaymentLifecycleEngine", "MonitorScheduler", "PaymentStore",
    "EscrowConfig", "AgentIdentity", "Network",
    "HttpLedgerClient", "LedgerClient",
    "PaymentRequest", "PaymentPage", "WalletBalance", "OnChainState", "TERMINAL_STATES",
    "EventEmitter", "EventType", "StateChange", "ResultSubmitted", "RefundAuthorized",
    "MonitorError",
    "canonical_json", "compute_hash", "input_hash", "result_hash",
    "generate_purchaser_identifier",
    "EscrowError", "NotProvisionedError", "UnknownPaymentError", "ValidationError",
    "TransportError", "LedgerTimeoutError", "RemoteRejectedError", "EngineClosedError",
]
