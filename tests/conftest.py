"""Shared fixtures: an in-memory ledger and an event recorder."""

from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from agent_escrow.config import AgentIdentity, EscrowConfig
from agent_escrow.engine import PaymentLifecycleEngine
from agent_escrow.errors import RemoteRejectedError, TransportError
from agent_escrow.events import EventType


class FakeLedger:
    """Scriptable stand-in for the remote payment service."""

    def __init__(self):
        self.entities: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        self.on_resolve: Optional[Callable[[str], None]] = None
        self.closed = False
        self._counter = 0

    def set_state(self, blockchain_identifier: str, state: Optional[str]) -> None:
        self.entities[blockchain_identifier]["onChainState"] = state

    def resolve_count(self, blockchain_identifier: str) -> int:
        return sum(1 for c in self.calls if c[0] == "resolve" and c[1] == blockchain_identifier)

    def create_payment(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create", payload))
        self._counter += 1
        bid = f"bid-{self._counter}"
        self.entities[bid] = {
            "blockchainIdentifier": bid,
            "identifierFromPurchaser": payload["identifierFromPurchaser"],
            "onChainState": None,
            "payByTime": payload["payByTime"],
            "submitResultTime": payload["submitResultTime"],
            "inputHash": payload.get("inputHash"),
            "metadata": payload.get("metadata"),
            "NextAction": {"requestedAction": "None"},
            "RequestedFunds": [{"amount": "10000000", "unit": "lovelace"}],
        }
        return dict(self.entities[bid])

    def resolve_payment(self, blockchain_identifier: str, network: str) -> dict[str, Any]:
        self.calls.append(("resolve", blockchain_identifier, network))
        if self.on_resolve is not None:
            self.on_resolve(blockchain_identifier)
        return self._entity(blockchain_identifier)

    def submit_result(
        self, blockchain_identifier: str, network: str, result_hash: str
    ) -> dict[str, Any]:
        self.calls.append(("submit", blockchain_identifier, network, result_hash))
        entity = self._entity(blockchain_identifier)
        self.entities[blockchain_identifier]["resultHash"] = result_hash
        self.entities[blockchain_identifier]["NextAction"] = {
            "requestedAction": "SubmitResultRequested"
        }
        return {**entity, "resultHash": result_hash}

    def authorize_refund(self, blockchain_identifier: str, network: str) -> dict[str, Any]:
        self.calls.append(("refund", blockchain_identifier, network))
        entity = self._entity(blockchain_identifier)
        self.entities[blockchain_identifier]["NextAction"] = {
            "requestedAction": "AuthorizeRefundRequested"
        }
        return entity

    def list_payments(
        self,
        network: str,
        limit: int,
        cursor: Optional[str] = None,
        filter_smart_contract_address: Optional[str] = None,
    ) -> dict[str, Any]:
        self.calls.append(("list", network, limit, cursor, filter_smart_contract_address))
        ids = sorted(self.entities)
        start = ids.index(cursor) if cursor in ids else 0
        page = ids[start:start + limit]
        rest = ids[start + limit:]
        return {
            "data": [dict(self.entities[i]) for i in page],
            "nextCursorId": rest[0] if rest else None,
        }

    def get_wallet(self, network: str) -> dict[str, Any]:
        self.calls.append(("wallet", network))
        return {"lovelace": "25000000", "tokens": [{"unit": "usdm", "quantity": "3"}]}

    def close(self) -> None:
        self.closed = True

    def _entity(self, blockchain_identifier: str) -> dict[str, Any]:
        if blockchain_identifier in self.failing:
            raise TransportError(f"POST /payment failed for {blockchain_identifier}")
        if blockchain_identifier not in self.entities:
            raise RemoteRejectedError(404, "Payment not found")
        return dict(self.entities[blockchain_identifier])


class EventRecorder:
    """Subscribes to every event type and keeps what it receives."""

    def __init__(self, engine: PaymentLifecycleEngine):
        self.received: list[tuple[EventType, Any]] = []
        for event in EventType:
            engine.on(event, self._listener(event))

    def _listener(self, event: EventType):
        return lambda payload: self.received.append((event, payload))

    def of(self, event: EventType) -> list[Any]:
        return [payload for kind, payload in self.received if kind == event]


@pytest.fixture
def config():
    return EscrowConfig(
        payment_service_url="https://ledger.test/api/v1",
        payment_api_key="test-token",
        identity=AgentIdentity(agent_identifier="agent-1", seller_vkey="vkey-1"),
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def engine(config, ledger):
    e = PaymentLifecycleEngine(config=config, ledger=ledger)
    yield e
    e.close()


@pytest.fixture
def recorder(engine):
    return EventRecorder(engine)
