import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for payloads exchanged with the Vaultum API (camelCase on the wire)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Chain(str, Enum):
    ethereum = "ethereum"
    polygon = "polygon"
    arbitrum = "arbitrum"
    optimism = "optimism"
    base = "base"
    sepolia = "sepolia"


class OperationState(str, Enum):
    queued = "queued"
    sent = "sent"
    success = "success"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationState.success, OperationState.failed)


class AccountModule(str, Enum):
    social_recovery = "socialRecovery"
    session_keys = "sessionKeys"
    spending_limits = "spendingLimits"


class UserOperation(WireModel):
    sender: str
    nonce: str
    init_code: str
    call_data: str
    call_gas_limit: str
    verification_gas_limit: str
    pre_verification_gas: str
    max_fee_per_gas: str
    max_priority_fee_per_gas: str
    paymaster_and_data: str
    signature: Optional[str] = None


class QuoteRequest(WireModel):
    from_chain: Chain
    to_chain: Chain
    token: str
    amount: str


class Route(WireModel):
    path: List[str]
    bridges: List[str]
    estimated_time: int


class QuoteResponse(WireModel):
    estimated_fee: str
    route: Optional[Route] = None


class SubmitRequest(WireModel):
    chain: Chain
    user_op: UserOperation
    signature: Optional[str] = None


class SubmitResponse(WireModel):
    model_config = ConfigDict(extra="allow")

    id: str
    state: Optional[OperationState] = None


class StatusResponse(WireModel):
    """Status of a submitted operation; fields the API adds are kept as extras"""

    model_config = ConfigDict(extra="allow")

    id: str
    state: OperationState
    tx_hash: Optional[str] = None
    chain: Optional[str] = None
    user_op: Optional[UserOperation] = None
    error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal


class DeployAccountRequest(WireModel):
    owner: str
    chain: Chain
    modules: Optional[List[AccountModule]] = None
    salt: Optional[str] = None


class RecoveryRequest(WireModel):
    account: str
    new_owner: str
    guardian: str
    signature: str


class SessionKeyOptions(BaseModel):
    address: str
    expiry: int
    allowed_selectors: List[str] = Field(default_factory=list)


class PollConfig(BaseModel):
    """Bounds for waiting on an operation; polling stops on whichever bound triggers first"""

    interval_ms: int = Field(default=2000, ge=0)
    max_attempts: Optional[int] = Field(default=60, ge=1)
    timeout_ms: Optional[int] = Field(default=120_000, ge=0)

    @model_validator(mode="after")
    def _require_a_bound(self) -> "PollConfig":
        if self.max_attempts is None and self.timeout_ms is None:
            raise ValueError("at least one of max_attempts or timeout_ms must be set")
        return self


class ClientOptions(BaseModel):
    base_url: str
    api_key: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_ms: int = Field(default=30_000, gt=0)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientOptions":
        """Build options from VAULTUM_API_URL, VAULTUM_API_KEY and VAULTUM_TIMEOUT_MS"""
        values: Dict[str, Any] = {}
        if "VAULTUM_API_URL" in os.environ:
            values["base_url"] = os.environ["VAULTUM_API_URL"]
        if "VAULTUM_API_KEY" in os.environ:
            values["api_key"] = os.environ["VAULTUM_API_KEY"]
        if "VAULTUM_TIMEOUT_MS" in os.environ:
            values["timeout_ms"] = int(os.environ["VAULTUM_TIMEOUT_MS"])
        values.update(overrides)
        return cls(**values)
