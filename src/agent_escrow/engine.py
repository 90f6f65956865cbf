"""
Payment lifecycle engine.

Flow:
1. Create a payment request (input data hashed, never sent)
2. Track it in the store and reconcile its on-chain state by polling
3. Emit events on observed transitions (funds locked, completed, ...)
4. Submit the result hash, or authorize a refund
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .config import AgentIdentity, EscrowConfig
from .errors import EngineClosedError, NotProvisionedError, UnknownPaymentError, ValidationError
from .events import (
    EventEmitter,
    EventType,
    Listener,
    RefundAuthorized,
    ResultSubmitted,
    StateChange,
)
from .hashing import input_hash, result_hash
from .ledger_client import HttpLedgerClient, LedgerClient
from .models import (
    OnChainState,
    PaymentPage,
    PaymentRequest,
    WalletBalance,
    format_timestamp,
)
from .monitor import MonitorScheduler
from .store import PaymentStore

logger = logging.getLogger(__name__)


PAYMENT_TYPE = "Web3CardanoV1"
DEFAULT_PAY_BY_DELTA = timedelta(hours=12)
DEFAULT_SUBMIT_RESULT_DELTA = timedelta(hours=24)
DEFAULT_LIST_LIMIT = 10


class PaymentLifecycleEngine:
    """Creates, tracks and settles escrow payment requests for one agent."""

    def __init__(
        self,
        config: Optional[EscrowConfig] = None,
        ledger: Optional[LedgerClient] = None,
        store: Optional[PaymentStore] = None,
        events: Optional[EventEmitter] = None,
    ):
        self.config = config or EscrowConfig.from_env()
        self._owns_ledger = ledger is None
        self._ledger: LedgerClient = ledger or HttpLedgerClient.from_config(self.config)
        self.store = store if store is not None else PaymentStore()
        self.events = events if events is not None else EventEmitter()
        self._lock = threading.RLock()
        self._closed = False
        self._monitor = MonitorScheduler(
            store=self.store,
            refresh=self.refresh_status,
            emitter=self.events,
            interval_seconds=self.config.monitor_interval_seconds,
        )

    @property
    def network(self) -> str:
        return self.config.network.value

    @property
    def closed(self) -> bool:
        return self._closed

    def set_identity(self, identity: AgentIdentity) -> None:
        """Install the identity produced by agent provisioning.

        An HTTP ledger client is rescoped to the new seller key.
        """
        self.config.identity = identity
        if isinstance(self._ledger, HttpLedgerClient):
            self._ledger.set_seller_vkey(identity.seller_vkey)

    # -- lifecycle operations -------------------------------------------

    def create_payment_request(
        self,
        identifier_from_purchaser: str,
        input_data: Any = None,
        pay_by_time: Optional[datetime] = None,
        submit_result_time: Optional[datetime] = None,
        metadata: Optional[str] = None,
    ) -> PaymentRequest:
        self._ensure_open()
        agent_identifier = self.config.identity.agent_identifier
        if not agent_identifier:
            raise NotProvisionedError(
                "agent_identifier not configured. Provision the agent first "
                "or set ESCROW_AGENT_IDENTIFIER."
            )
        _require_identifier(identifier_from_purchaser, "identifier_from_purchaser")

        now = datetime.now(timezone.utc)
        pay_by = _as_utc(pay_by_time) if pay_by_time else now + DEFAULT_PAY_BY_DELTA
        submit_by = (
            _as_utc(submit_result_time) if submit_result_time else now + DEFAULT_SUBMIT_RESULT_DELTA
        )
        if pay_by >= submit_by:
            raise ValidationError("pay_by_time must be earlier than submit_result_time")

        payload: dict[str, Any] = {
            "agentIdentifier": agent_identifier,
            "network": self.network,
            "paymentType": PAYMENT_TYPE,
            "payByTime": format_timestamp(pay_by),
            "submitResultTime": format_timestamp(submit_by),
            "identifierFromPurchaser": identifier_from_purchaser,
        }
        if input_data is not None:
            payload["inputHash"] = input_hash(input_data, identifier_from_purchaser)
        if metadata:
            payload["metadata"] = metadata

        logger.info(
            "Creating payment request (agent: %s, network: %s, purchaser: %s)",
            agent_identifier,
            self.network,
            identifier_from_purchaser,
        )
        response = self._ledger.create_payment(payload)

        with self._lock:
            payment = PaymentRequest.from_dict(
                response, identifier_from_purchaser=identifier_from_purchaser
            )
            if self._discarded(payment.blockchain_identifier):
                return payment
            self.store.put(payment)
            self.events.emit(EventType.CREATED, payment)

        logger.info(
            "Payment request created: %s (pay by %s, submit by %s)",
            payment.blockchain_identifier,
            payment.pay_by_time,
            payment.submit_result_time,
        )
        return payment

    def refresh_status(self, blockchain_identifier: str) -> PaymentRequest:
        """Fetch the current state and emit events if it changed."""
        self._ensure_open()
        _require_identifier(blockchain_identifier, "blockchain_identifier")
        response = self._ledger.resolve_payment(blockchain_identifier, self.network)

        with self._lock:
            payment = self._parse(response, blockchain_identifier)
            if self._discarded(blockchain_identifier):
                return payment
            previous = self.store.put(payment)
            previous_state = previous.on_chain_state if previous else None
            if previous_state != payment.on_chain_state:
                self._emit_transition(previous_state, payment)
        return payment

    def submit_result(self, blockchain_identifier: str, output_data: Any) -> PaymentRequest:
        """Send the hash of *output_data*; the raw output stays with the caller."""
        self._ensure_open()
        _require_identifier(blockchain_identifier, "blockchain_identifier")
        cached = self.store.get(blockchain_identifier)
        if cached is None:
            raise UnknownPaymentError(blockchain_identifier)

        digest = result_hash(output_data, cached.identifier_from_purchaser)
        logger.info("Submitting result for %s (hash: %s)", blockchain_identifier, digest)
        response = self._ledger.submit_result(blockchain_identifier, self.network, digest)

        with self._lock:
            payment = self._parse(response, blockchain_identifier)
            if self._discarded(blockchain_identifier):
                return payment
            self.store.put(payment)
            self.events.emit(
                EventType.RESULT_SUBMITTED,
                ResultSubmitted(blockchain_identifier=blockchain_identifier, result_hash=digest),
            )

        logger.info(
            "Result submitted for %s (next action: %s)",
            blockchain_identifier,
            payment.next_action.get("requestedAction"),
        )
        return payment

    def authorize_refund(self, blockchain_identifier: str) -> PaymentRequest:
        self._ensure_open()
        _require_identifier(blockchain_identifier, "blockchain_identifier")
        logger.info("Authorizing refund for %s", blockchain_identifier)
        response = self._ledger.authorize_refund(blockchain_identifier, self.network)

        with self._lock:
            payment = self._parse(response, blockchain_identifier)
            if self._discarded(blockchain_identifier):
                return payment
            self.store.put(payment)
            self.events.emit(
                EventType.REFUND_AUTHORIZED,
                RefundAuthorized(blockchain_identifier=blockchain_identifier),
            )

        logger.info("Refund authorized: %s", blockchain_identifier)
        return payment

    def list_payments(
        self,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_LIST_LIMIT,
        filter_smart_contract_address: Optional[str] = None,
    ) -> PaymentPage:
        """One page of payment history. Results are not tracked locally."""
        self._ensure_open()
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")

        body = self._ledger.list_payments(
            self.network,
            limit,
            cursor=cursor,
            filter_smart_contract_address=filter_smart_contract_address,
        )
        items = body.get("data")
        if items is None:
            items = body.get("payments") or []
        if not isinstance(items, list):
            raise ValidationError("Payment list response must contain a list")
        return PaymentPage(
            payments=[PaymentRequest.from_dict(item) for item in items],
            next_cursor=body.get("nextCursorId") or body.get("nextCursor"),
        )

    def get_wallet_balance(self) -> WalletBalance:
        self._ensure_open()
        if not self.config.identity.seller_vkey:
            raise NotProvisionedError("seller_vkey not configured. Cannot query wallet balance.")
        return WalletBalance.from_dict(self._ledger.get_wallet(self.network))

    # -- store access ---------------------------------------------------

    def get_payment(self, blockchain_identifier: str) -> Optional[PaymentRequest]:
        return self.store.get(blockchain_identifier)

    def pending_payments(self) -> dict[str, PaymentRequest]:
        return self.store.snapshot()

    def cleanup_completed_payments(self) -> int:
        """Remove payments in a terminal state; returns how many were dropped."""
        with self._lock:
            removed = self.store.cleanup_terminal()
        if removed:
            logger.info("Cleaned up %d completed payment(s)", removed)
        return removed

    # -- events and monitoring ------------------------------------------

    def on(self, event: EventType | str, listener: Listener) -> Listener:
        return self.events.on(event, listener)

    def off(self, event: EventType | str, listener: Listener) -> bool:
        return self.events.off(event, listener)

    @property
    def is_monitoring(self) -> bool:
        return self._monitor.is_running

    def start_monitoring(self, interval_seconds: Optional[float] = None) -> bool:
        self._ensure_open()
        return self._monitor.start(interval_seconds)

    def stop_monitoring(self) -> bool:
        return self._monitor.stop()

    def run_monitor_cycle(self) -> int:
        """Run one reconciliation pass on the calling thread."""
        self._ensure_open()
        return self._monitor.run_cycle()

    def close(self) -> None:
        """Stop monitoring, drop every tracked payment and detach listeners."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._monitor.stop()
        self.store.clear()
        self.events.remove_all_listeners()
        if self._owns_ledger:
            self._ledger.close()
        logger.info("Payment engine closed")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # -- internal helpers -----------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise EngineClosedError("Payment engine is closed")

    def _discarded(self, blockchain_identifier: str) -> bool:
        if self._closed:
            logger.debug("Engine closed, discarding ledger response for %s", blockchain_identifier)
            return True
        return False

    def _parse(self, response: dict[str, Any], blockchain_identifier: str) -> PaymentRequest:
        entity = dict(response)
        entity.setdefault("blockchainIdentifier", blockchain_identifier)
        cached = self.store.get(blockchain_identifier)
        return PaymentRequest.from_dict(
            entity,
            identifier_from_purchaser=cached.identifier_from_purchaser if cached else None,
        )

    def _emit_transition(
        self, previous_state: Optional[OnChainState], payment: PaymentRequest
    ) -> None:
        self.events.emit(
            EventType.STATE_CHANGED,
            StateChange(
                blockchain_identifier=payment.blockchain_identifier,
                previous_state=previous_state,
                new_state=payment.on_chain_state,
                payment=payment,
            ),
        )
        if payment.on_chain_state == OnChainState.FUNDS_LOCKED:
            logger.info("Payment received (FundsLocked): %s", payment.blockchain_identifier)
            self.events.emit(EventType.FUNDS_LOCKED, payment)
        elif payment.on_chain_state == OnChainState.WITHDRAWN:
            logger.info("Payment completed (Withdrawn): %s", payment.blockchain_identifier)
            self.events.emit(EventType.COMPLETED, payment)


def _require_identifier(value: Any, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
