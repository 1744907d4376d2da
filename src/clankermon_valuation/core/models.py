"""Pydantic models shared by the engine, the cards and the server."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

FINAL_CATEGORY = "_Final"


class ExecutionState(str, Enum):
    """Execution states reported by the Dune API."""

    PENDING = "QUERY_STATE_PENDING"
    EXECUTING = "QUERY_STATE_EXECUTING"
    COMPLETED = "QUERY_STATE_COMPLETED"
    COMPLETED_PARTIAL = "QUERY_STATE_COMPLETED_PARTIAL"
    FAILED = "QUERY_STATE_FAILED"
    CANCELLED = "QUERY_STATE_CANCELLED"
    EXPIRED = "QUERY_STATE_EXPIRED"

    @classmethod
    def parse(cls, value: Any) -> Optional["ExecutionState"]:
        """Map a raw state string to a member, None when unrecognised."""
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_completed(self) -> bool:
        # a partial result is terminal and carries the rows Dune kept
        return self in (ExecutionState.COMPLETED, ExecutionState.COMPLETED_PARTIAL)

    @property
    def is_failed(self) -> bool:
        return self in (ExecutionState.FAILED, ExecutionState.CANCELLED, ExecutionState.EXPIRED)


class EvaluationRequest(BaseModel):
    """The two inputs of an evaluation, both required and non-empty."""

    level: str = Field(min_length=1)
    cm_type: str = Field(min_length=1)


class ExecutionHandle(BaseModel):
    """Identifies one submitted remote execution."""

    execution_id: str
    state: Optional[str] = None


class ExecutionStatus(BaseModel):
    """A single observation of a remote execution."""

    execution_id: str
    state: Optional[ExecutionState] = None
    raw_state: Optional[str] = None
    rows: list[dict] = Field(default_factory=list)
    error: Optional[Any] = None

    @property
    def is_completed(self) -> bool:
        return self.state is not None and self.state.is_completed

    @property
    def is_failed(self) -> bool:
        return self.state is not None and self.state.is_failed


class ValuationRow(BaseModel):
    """One formatted valuation: usd with 2 decimals, eth with 6."""

    category: str
    usd_valuation: str
    eth_valuation: str


class EvaluationResult(BaseModel):
    """Formatted evaluation returned by the API and rendered on cards."""

    model_config = ConfigDict(populate_by_name=True)

    level: str
    cm_type: str = Field(alias="type")
    valuations: list[ValuationRow]
    donation_address: Optional[str] = None

    @property
    def final(self) -> Optional[ValuationRow]:
        return next((v for v in self.valuations if v.category == FINAL_CATEGORY), None)

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True)


class CardStage(str, Enum):
    """Stages of the interactive frame."""

    START = "start"
    GET_TYPE = "get-type"
    EVALUATE = "evaluate"
    DONATE = "donate"
    ERROR = "error"


class ButtonAction(str, Enum):
    POST = "post"
    TX = "tx"


class CardButton(BaseModel):
    label: str
    action: ButtonAction = ButtonAction.POST
    target: Optional[str] = None


class Card(BaseModel):
    """One rendered unit of the frame protocol."""

    stage: CardStage
    image: str
    heading: str
    lines: list[str] = Field(default_factory=list)
    input_placeholder: Optional[str] = None
    buttons: list[CardButton] = Field(default_factory=list)
    post_url: Optional[str] = None


class TransactionParams(BaseModel):
    abi: list = Field(default_factory=list)
    to: Optional[str] = None
    value: str


class DonationTransaction(BaseModel):
    """Transaction descriptor returned by the donate action."""

    chainId: str
    method: str = "eth_sendTransaction"
    params: TransactionParams
