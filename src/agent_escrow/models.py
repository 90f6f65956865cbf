"""Payment data model shared by the store, engine and ledger client."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import ValidationError


PENDING_STATE_LABEL = "Pending"


class OnChainState(str, Enum):
    WAITING_FOR_EXTERNAL_ACTION = "WaitingForExternalAction"
    FUNDS_LOCKED = "FundsLocked"
    RESULT_SUBMITTED = "ResultSubmitted"
    REFUND_REQUESTED = "RefundRequested"
    DISPUTED = "Disputed"
    FUNDS_OR_DATUM_INVALID = "FundsOrDatumInvalid"
    WITHDRAWN = "Withdrawn"
    REFUND_WITHDRAWN = "RefundWithdrawn"
    DISPUTED_WITHDRAWN = "DisputedWithdrawn"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        OnChainState.WITHDRAWN,
        OnChainState.REFUND_WITHDRAWN,
        OnChainState.DISPUTED_WITHDRAWN,
    }
)


@dataclass
class PaymentRequest:
    """A payment request as last reported by the ledger."""

    blockchain_identifier: str
    identifier_from_purchaser: str
    on_chain_state: Optional[OnChainState] = None
    pay_by_time: Optional[datetime] = None
    submit_result_time: Optional[datetime] = None
    requested_funds: list[dict[str, Any]] = field(default_factory=list)
    next_action: dict[str, Any] = field(default_factory=dict)
    input_hash: Optional[str] = None
    result_hash: Optional[str] = None
    metadata: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def state_label(self) -> str:
        return self.on_chain_state.value if self.on_chain_state else PENDING_STATE_LABEL

    @property
    def is_terminal(self) -> bool:
        return self.on_chain_state is not None and self.on_chain_state.is_terminal

    def to_dict(self) -> dict:
        return {
            "blockchainIdentifier": self.blockchain_identifier,
            "identifierFromPurchaser": self.identifier_from_purchaser,
            "onChainState": self.on_chain_state.value if self.on_chain_state else None,
            "payByTime": format_timestamp(self.pay_by_time) if self.pay_by_time else None,
            "submitResultTime": (
                format_timestamp(self.submit_result_time) if self.submit_result_time else None
            ),
            "requestedFunds": self.requested_funds,
            "nextAction": self.next_action,
            "inputHash": self.input_hash,
            "resultHash": self.result_hash,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(
        cls,
        d: Mapping[str, Any],
        identifier_from_purchaser: Optional[str] = None,
    ) -> "PaymentRequest":
        """Parse a ledger entity.

        *identifier_from_purchaser* fills the salt when the response omits it.
        """
        if not isinstance(d, Mapping):
            raise ValidationError(f"Payment entity must be an object, got {type(d).__name__}")
        blockchain_identifier = d.get("blockchainIdentifier")
        if not blockchain_identifier:
            raise ValidationError("Payment entity is missing blockchainIdentifier")
        purchaser = d.get("identifierFromPurchaser") or identifier_from_purchaser or ""
        return cls(
            blockchain_identifier=str(blockchain_identifier),
            identifier_from_purchaser=str(purchaser),
            on_chain_state=parse_state(d.get("onChainState")),
            pay_by_time=parse_timestamp(d.get("payByTime")),
            submit_result_time=parse_timestamp(d.get("submitResultTime")),
            requested_funds=list(_first(d, "requestedFunds", "RequestedFunds") or []),
            next_action=dict(_first(d, "nextAction", "NextAction") or {}),
            input_hash=d.get("inputHash"),
            result_hash=d.get("resultHash"),
            metadata=d.get("metadata"),
            raw=dict(d),
        )


@dataclass
class PaymentPage:
    """One page of the ledger's payment history."""

    payments: list[PaymentRequest]
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


@dataclass
class WalletBalance:
    lovelace: int
    tokens: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "WalletBalance":
        try:
            lovelace = int(_first(d, "lovelace", "ada") or 0)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid wallet balance: {e}") from e
        return cls(lovelace=lovelace, tokens=list(d.get("tokens") or []), raw=dict(d))


def parse_state(value: Any) -> Optional[OnChainState]:
    if value is None or value == "":
        return None
    if isinstance(value, OnChainState):
        return value
    try:
        return OnChainState(str(value))
    except ValueError as e:
        raise ValidationError(f"Unknown onChainState: {value}") from e


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept ISO-8601 strings or epoch milliseconds (int or numeric string)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid timestamp: {value}") from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _first(d: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if d.get(key) is not None:
            return d[key]
    return None
