"""
Engine configuration and agent identity.

Values come from explicit arguments first, then environment variables:

    ESCROW_PAYMENT_SERVICE_URL   payment service base URL
    ESCROW_PAYMENT_API_KEY       API token sent in the ``token`` header
    ESCROW_NETWORK               Preprod | Mainnet (default Preprod)
    ESCROW_AGENT_IDENTIFIER      agent identifier issued at provisioning
    ESCROW_SELLER_VKEY           seller verification key (wallet queries)
    ESCROW_TIMEOUT_SECONDS       HTTP timeout (default 30)
    ESCROW_MONITOR_INTERVAL      polling interval in seconds (default 30)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import ValidationError


ESCROW_PAYMENT_SERVICE_URL_ENV = "ESCROW_PAYMENT_SERVICE_URL"
ESCROW_PAYMENT_API_KEY_ENV = "ESCROW_PAYMENT_API_KEY"
ESCROW_NETWORK_ENV = "ESCROW_NETWORK"
ESCROW_AGENT_IDENTIFIER_ENV = "ESCROW_AGENT_IDENTIFIER"
ESCROW_SELLER_VKEY_ENV = "ESCROW_SELLER_VKEY"
ESCROW_TIMEOUT_SECONDS_ENV = "ESCROW_TIMEOUT_SECONDS"
ESCROW_MONITOR_INTERVAL_ENV = "ESCROW_MONITOR_INTERVAL"

DEFAULT_PAYMENT_SERVICE_URL = "http://localhost:3001/api/v1"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MONITOR_INTERVAL_SECONDS = 30.0


class Network(str, Enum):
    PREPROD = "Preprod"
    MAINNET = "Mainnet"

    @classmethod
    def parse(cls, value: "str | Network") -> "Network":
        if isinstance(value, Network):
            return value
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValidationError(f"Unknown network: {value}")


@dataclass(frozen=True)
class AgentIdentity:
    """Identity issued by agent provisioning (wallet + registry)."""

    agent_identifier: Optional[str] = None
    seller_vkey: Optional[str] = None

    @property
    def is_provisioned(self) -> bool:
        return bool(self.agent_identifier)


@dataclass
class EscrowConfig:
    payment_service_url: str = DEFAULT_PAYMENT_SERVICE_URL
    payment_api_key: str = ""
    network: Network = Network.PREPROD
    identity: AgentIdentity = field(default_factory=AgentIdentity)
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    monitor_interval_seconds: float = DEFAULT_MONITOR_INTERVAL_SECONDS

    def __post_init__(self):
        self.payment_service_url = self.payment_service_url.rstrip("/")
        self.network = Network.parse(self.network)
        if self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be > 0")
        if self.monitor_interval_seconds <= 0:
            raise ValidationError("monitor_interval_seconds must be > 0")

    @classmethod
    def from_env(
        cls,
        *,
        payment_service_url: str | None = None,
        payment_api_key: str | None = None,
        network: str | Network | None = None,
        agent_identifier: str | None = None,
        seller_vkey: str | None = None,
        timeout_seconds: float | None = None,
        monitor_interval_seconds: float | None = None,
    ) -> "EscrowConfig":
        """Build a config from environment variables, explicit args win."""
        identity = AgentIdentity(
            agent_identifier=agent_identifier or os.getenv(ESCROW_AGENT_IDENTIFIER_ENV) or None,
            seller_vkey=seller_vkey or os.getenv(ESCROW_SELLER_VKEY_ENV) or None,
        )
        return cls(
            payment_service_url=payment_service_url
            or os.getenv(ESCROW_PAYMENT_SERVICE_URL_ENV, DEFAULT_PAYMENT_SERVICE_URL),
            payment_api_key=payment_api_key or os.getenv(ESCROW_PAYMENT_API_KEY_ENV, ""),
            network=network or os.getenv(ESCROW_NETWORK_ENV, Network.PREPROD.value),
            identity=identity,
            timeout_seconds=timeout_seconds
            if timeout_seconds is not None
            else _float_env(ESCROW_TIMEOUT_SECONDS_ENV, DEFAULT_TIMEOUT_SECONDS),
            monitor_interval_seconds=monitor_interval_seconds
            if monitor_interval_seconds is not None
            else _float_env(ESCROW_MONITOR_INTERVAL_ENV, DEFAULT_MONITOR_INTERVAL_SECONDS),
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e
