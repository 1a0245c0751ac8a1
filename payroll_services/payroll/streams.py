"""
Salary stream records as mirrored from the ledger, their lifecycle rules, and
the HR / employee views built on top of them (admin actions, withdrawal
history, aggregate listing, plaintext reveal).
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from payroll_services.api.logging_config import get_logger
from payroll_services.errors import LedgerCallFailed, PayrollError, StreamLifecycleError
from payroll_services.fhe_core.relayer import normalize_handle

if TYPE_CHECKING:
    from payroll_services.fhe_core.decrypt import DecryptionClient
    from payroll_services.payroll.ledger import PayrollLedger

logger = get_logger("payroll.streams")


@dataclass(frozen=True)
class CiphertextHandle:
    """Opaque on-ledger reference to an encrypted value."""

    value: str

    def __post_init__(self):
        object.__setattr__(self, "value", normalize_handle(self.value))

    def __str__(self) -> str:
        return self.value

    @property
    def is_uninitialized(self) -> bool:
        # the ledger reports never-assigned encrypted fields as the zero handle
        return int(self.value, 16) == 0


# Plaintext when known, otherwise the handle the ledger holds.
Amount = Union[int, CiphertextHandle]


def _amount(raw: Any) -> Amount:
    if isinstance(raw, CiphertextHandle):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, (bytes, bytearray)) or (isinstance(raw, str) and raw.lower().startswith("0x")):
        return CiphertextHandle(raw)
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    raise ValueError(f"unrecognized amount value: {raw!r}")


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes")
    return bool(raw)


@dataclass(frozen=True)
class StreamState:
    employee: str
    rate_per_block: Amount
    start_block: int
    cliff_block: int
    claimed_amount: Amount
    is_paused: bool = False
    is_canceled: bool = False
    exists: bool = True

    def __post_init__(self):
        if self.exists and self.cliff_block < self.start_block:
            raise ValueError(
                f"cliff block {self.cliff_block} precedes start block {self.start_block}"
            )

    @classmethod
    def missing(cls, employee: str) -> "StreamState":
        return cls(employee, 0, 0, 0, 0, exists=False)

    @classmethod
    def from_ledger(cls, employee: str, data: Dict[str, Any]) -> "StreamState":
        """Build from the ledger script's readStream JSON."""
        if not _as_bool(data.get("exists", False)):
            return cls.missing(employee)
        try:
            return cls(
                employee=employee,
                rate_per_block=_amount(data["salaryPerBlock"]),
                start_block=int(data["startBlock"]),
                cliff_block=int(data["cliffBlock"]),
                claimed_amount=_amount(data["claimedAmount"]),
                is_paused=_as_bool(data.get("isPaused", False)),
                is_canceled=_as_bool(data.get("isCanceled", False)),
                exists=True,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerCallFailed(f"malformed stream record for {employee}: {e}", e) from e

    @property
    def amounts_known(self) -> bool:
        return isinstance(self.rate_per_block, int) and isinstance(self.claimed_amount, int)

    @property
    def status(self) -> str:
        if not self.exists:
            return "none"
        if self.is_canceled:
            return "canceled"
        return "paused" if self.is_paused else "active"


# ===== Lifecycle =====
class StreamAction(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    WITHDRAW = "withdraw"


def validate_transition(stream: StreamState, action: StreamAction) -> None:
    """Raise StreamLifecycleError if `action` is not allowed on `stream`."""
    if not stream.exists:
        raise StreamLifecycleError(f"No stream exists for {stream.employee}")
    if stream.is_canceled:
        raise StreamLifecycleError(f"Stream for {stream.employee} is canceled")
    if action is StreamAction.PAUSE and stream.is_paused:
        raise StreamLifecycleError(f"Stream for {stream.employee} is already paused")
    if action is StreamAction.RESUME and not stream.is_paused:
        raise StreamLifecycleError(f"Stream for {stream.employee} is not paused")
    if action is StreamAction.WITHDRAW and stream.is_paused:
        raise StreamLifecycleError(f"Stream for {stream.employee} is paused")


class StreamAdmin:
    """HR-side pause / resume / cancel, validated against current ledger state."""

    def __init__(self, ledger: "PayrollLedger"):
        self._ledger = ledger

    async def _apply(self, employee: str, action: StreamAction) -> str:
        stream = await self._ledger.read_stream(employee)
        validate_transition(stream, action)
        write = {
            StreamAction.PAUSE: self._ledger.pause_stream,
            StreamAction.RESUME: self._ledger.resume_stream,
            StreamAction.CANCEL: self._ledger.cancel_stream,
        }[action]
        tx = await write(employee)
        logger.info("Stream %s for %s (tx=%s)", action.value, employee, tx)
        return tx

    async def pause(self, employee: str) -> str:
        return await self._apply(employee, StreamAction.PAUSE)

    async def resume(self, employee: str) -> str:
        return await self._apply(employee, StreamAction.RESUME)

    async def cancel(self, employee: str) -> str:
        return await self._apply(employee, StreamAction.CANCEL)


# ===== Views =====
@dataclass(frozen=True)
class WithdrawalEvent:
    employee: str
    amount: int
    block_number: int
    tx_hash: str
    timestamp: int

    @classmethod
    def from_ledger(cls, data: Dict[str, Any]) -> "WithdrawalEvent":
        return cls(
            employee=str(data["employee"]),
            amount=int(data["amount"]),
            block_number=int(data["blockNumber"]),
            tx_hash=str(data["transactionHash"]),
            timestamp=int(data.get("timestamp", 0)),
        )


async def withdrawal_history(ledger: "PayrollLedger", employee: str) -> List[WithdrawalEvent]:
    """SalaryWithdrawn events for `employee`, most recent first."""
    events = await ledger.withdrawal_history(employee)
    return sorted(events, key=lambda ev: (ev.timestamp, ev.block_number), reverse=True)


async def list_streams(ledger: "PayrollLedger") -> List[StreamState]:
    """Every existing stream; an employee whose read fails is logged and skipped."""
    out: List[StreamState] = []
    for employee in await ledger.list_employees():
        try:
            stream = await ledger.read_stream(employee)
        except PayrollError as e:
            logger.error("Skipping %s: stream read failed: %s", employee, e)
            continue
        if stream.exists:
            out.append(stream)
    return out


async def reveal_stream(
    stream: StreamState,
    decryptor: "DecryptionClient",
    contract_address: str,
    user_address: Optional[str] = None,
) -> StreamState:
    """
    Decrypt the rate and claimed handles of the caller's own stream so accrual
    can be estimated with known plaintext. Already-plain fields are kept.
    """
    if not stream.exists:
        return stream
    updates: Dict[str, int] = {}
    for name in ("rate_per_block", "claimed_amount"):
        value = getattr(stream, name)
        if isinstance(value, CiphertextHandle):
            if value.is_uninitialized:
                updates[name] = 0
                continue
            updates[name] = await decryptor.decrypt(value.value, contract_address, user_address)
    return dataclasses.replace(stream, **updates) if updates else stream


__all__ = [
    "CiphertextHandle",
    "Amount",
    "StreamState",
    "StreamAction",
    "validate_transition",
    "StreamAdmin",
    "WithdrawalEvent",
    "withdrawal_history",
    "list_streams",
    "reveal_stream",
]
