from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from payroll_services.payroll.accrual import ClaimableEstimate, Countdown, format_countdown
from payroll_services.payroll.csv_rows import BulkRow
from payroll_services.payroll.streams import StreamState, WithdrawalEvent


class _Base(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class Ok(_Base):
    status: str = Field("ok", description="Fixed OK status for successful responses.")


class StreamView(_Base):
    employee: str = Field(..., description="Employee address.")
    rate_per_block: str = Field(..., description="Ciphertext handle of the salary per block (or wei if revealed).")
    start_block: int = Field(..., ge=0, description="First accruing block.")
    cliff_block: int = Field(..., ge=0, description="No withdrawal before this block.")
    claimed_amount: str = Field(..., description="Ciphertext handle of the amount already withdrawn.")
    is_paused: bool = Field(False, description="Accrual is paused.")
    is_canceled: bool = Field(False, description="Stream was canceled by HR.")
    status: str = Field(..., description="active / paused / canceled")

    @classmethod
    def from_state(cls, s: StreamState) -> "StreamView":
        return cls(
            employee=s.employee,
            rate_per_block=str(s.rate_per_block),
            start_block=s.start_block,
            cliff_block=s.cliff_block,
            claimed_amount=str(s.claimed_amount),
            is_paused=s.is_paused,
            is_canceled=s.is_canceled,
            status=s.status,
        )


class StreamList(Ok):
    current_block: Optional[int] = Field(None, description="Ledger block at read time.")
    streams: List[StreamView] = Field(default_factory=list)


class ClaimableView(_Base):
    known: bool = Field(..., description="False while the rate or claimed amount is still ciphertext.")
    amount_wei: Optional[str] = Field(None, description="Estimated claimable (wei, as string) when known.")

    @classmethod
    def from_estimate(cls, e: ClaimableEstimate) -> "ClaimableView":
        return cls(known=e.known, amount_wei=str(e.amount) if e.known else None)


class StreamDetail(Ok):
    stream: StreamView
    current_block: int = Field(..., ge=0)
    withdrawable: bool = Field(..., description="Exists, not paused and past the cliff.")
    countdown: str = Field(..., description="Human readable time to cliff.")
    countdown_seconds: int = Field(..., ge=0)
    claimable: ClaimableView

    @staticmethod
    def countdown_fields(c: Countdown) -> Dict[str, Any]:
        return {"countdown": format_countdown(c), "countdown_seconds": c.total_seconds}


class WithdrawalEventView(_Base):
    employee: str
    amount_wei: str = Field(..., description="Withdrawn amount (wei, as string).")
    block_number: int = Field(..., ge=0)
    tx_hash: str
    timestamp: int = Field(..., ge=0, description="Block timestamp (unix seconds).")

    @classmethod
    def from_event(cls, ev: WithdrawalEvent) -> "WithdrawalEventView":
        return cls(
            employee=ev.employee,
            amount_wei=str(ev.amount),
            block_number=ev.block_number,
            tx_hash=ev.tx_hash,
            timestamp=ev.timestamp,
        )


class WithdrawalHistory(Ok):
    employee: str
    events: List[WithdrawalEventView] = Field(default_factory=list, description="Most recent first.")


class BulkValidateReq(_Base):
    csv: str = Field(..., min_length=1, description="CSV text: address,salaryPerBlock,startBlock,cliffBlocks")


class BulkRowView(_Base):
    line_number: int = Field(..., ge=1)
    address: str
    rate_per_block_wei: str
    start_block: Optional[int] = Field(None, description="None when 'auto'.")
    cliff_blocks: int = Field(..., ge=0)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_row(cls, r: BulkRow) -> "BulkRowView":
        return cls(
            line_number=r.line_number,
            address=r.address,
            rate_per_block_wei=str(r.rate_per_block_wei),
            start_block=r.start_block,
            cliff_blocks=r.cliff_blocks,
            errors=list(r.errors),
        )


class BulkValidateRes(Ok):
    rows: List[BulkRowView] = Field(default_factory=list)
    valid_count: int = Field(..., ge=0)
    invalid_count: int = Field(..., ge=0)
    errors: List[str] = Field(default_factory=list, description="File-level errors (e.g. missing columns).")
