"""
Three-phase withdrawal.

    Requesting  -> ledger computes the claimable amount as ciphertext and emits
                   its handle in a WithdrawalReady event
    Decrypting  -> the handle is decrypted for the employee
    Submitting  -> the plaintext amount is sent back to the ledger

Any phase failure stops the attempt and raises WithdrawalError tagged with the
phase. There is no rollback of the Requesting write; calling withdraw() again
starts over from Requesting and the ledger recomputes the snapshot.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol

from payroll_services.api.logging_config import get_logger
from payroll_services.errors import HandleNotFound, PayrollError, StreamLifecycleError
from payroll_services.fhe_core.relayer import normalize_handle
from payroll_services.payroll.accrual import countdown_to_cliff, format_countdown
from payroll_services.payroll.ledger import LedgerReceipt, PayrollLedger
from payroll_services.payroll.streams import StreamAction, validate_transition

logger = get_logger("payroll.withdrawal")

WITHDRAWAL_READY_EVENT = "WithdrawalReady"
CLAIMABLE_HANDLE_ARG = "claimableHandle"


class WithdrawalPhase(str, Enum):
    REQUESTING = "requesting"
    DECRYPTING = "decrypting"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def terminal(self) -> bool:
        return self in (WithdrawalPhase.SUCCEEDED, WithdrawalPhase.FAILED)


_NEXT = {
    WithdrawalPhase.REQUESTING: WithdrawalPhase.DECRYPTING,
    WithdrawalPhase.DECRYPTING: WithdrawalPhase.SUBMITTING,
    WithdrawalPhase.SUBMITTING: WithdrawalPhase.SUCCEEDED,
}


class WithdrawalError(PayrollError):
    """A withdrawal phase failed. Re-invoking withdraw() is always allowed."""

    retry_safe = True

    def __init__(self, phase: WithdrawalPhase, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase.label} failed: {cause}")


class Decryptor(Protocol):
    async def decrypt(self, handle: Any, contract_address: str, user_address: Optional[str] = None) -> int: ...


@dataclass
class WithdrawalAttempt:
    employee: str
    phase: WithdrawalPhase = WithdrawalPhase.REQUESTING
    request_tx: Optional[str] = None
    handle: Optional[str] = None
    amount: Optional[int] = field(default=None, repr=False)
    tx_ref: Optional[str] = None
    failed_phase: Optional[WithdrawalPhase] = None
    reason: Optional[str] = None
    history: List[WithdrawalPhase] = field(default_factory=lambda: [WithdrawalPhase.REQUESTING])

    def advance(self) -> WithdrawalPhase:
        if self.phase.terminal:
            raise StreamLifecycleError(f"withdrawal already {self.phase.value}")
        self.phase = _NEXT[self.phase]
        self.history.append(self.phase)
        return self.phase

    def fail(self, reason: str) -> None:
        self.failed_phase = self.phase
        self.reason = reason
        self.phase = WithdrawalPhase.FAILED
        self.history.append(self.phase)


@dataclass(frozen=True)
class WithdrawalResult:
    amount: int
    tx_ref: str
    request_tx: str
    handle: str


PhaseCallback = Callable[[WithdrawalAttempt], None]


def extract_claimable_handle(receipt: LedgerReceipt) -> str:
    """Pull claimableHandle out of the WithdrawalReady event in a receipt."""
    for log in receipt.logs:
        if log.get("eventName") != WITHDRAWAL_READY_EVENT:
            continue
        handle = (log.get("args") or {}).get(CLAIMABLE_HANDLE_ARG)
        if handle:
            return normalize_handle(handle)
    raise HandleNotFound(
        f"no {WITHDRAWAL_READY_EVENT} event with a {CLAIMABLE_HANDLE_ARG} in tx {receipt.tx_hash}"
    )


class WithdrawalOrchestrator:
    def __init__(
        self,
        ledger: PayrollLedger,
        decryptor: Decryptor,
        contract_address: str,
        precheck: bool = True,
    ):
        self._ledger = ledger
        self._decryptor = decryptor
        self.contract_address = contract_address
        self.precheck = precheck

    async def withdraw(self, employee: str, on_phase: Optional[PhaseCallback] = None) -> WithdrawalResult:
        attempt = WithdrawalAttempt(employee=employee)

        def report() -> None:
            if on_phase is not None:
                on_phase(attempt)

        def failed(cause: BaseException) -> WithdrawalError:
            phase = attempt.phase
            attempt.fail(str(cause))
            report()
            logger.error("Withdrawal for %s failed during %s: %s", employee, phase.value, cause)
            return WithdrawalError(phase, cause)

        report()
        logger.info("Withdrawal for %s: requesting claimable amount", employee)
        try:
            if self.precheck:
                await self._check_withdrawable(employee)
            receipt = await self._ledger.request_claimable_amount(employee)
            attempt.request_tx = receipt.tx_hash
            attempt.handle = extract_claimable_handle(receipt)
        except Exception as e:
            raise failed(e) from e

        attempt.advance()
        report()
        logger.info("Withdrawal for %s: decrypting claimable handle", employee)
        try:
            attempt.amount = await self._decryptor.decrypt(attempt.handle, self.contract_address, employee)
        except Exception as e:
            raise failed(e) from e

        attempt.advance()
        report()
        logger.info("Withdrawal for %s: submitting", employee)
        logger.debug("Submitting withdrawal amount %s", attempt.amount)
        try:
            attempt.tx_ref = await self._ledger.submit_withdrawal(employee, attempt.amount)
        except Exception as e:
            raise failed(e) from e

        attempt.advance()
        report()
        logger.info("Withdrawal for %s succeeded (tx=%s)", employee, attempt.tx_ref)
        return WithdrawalResult(
            amount=attempt.amount,
            tx_ref=attempt.tx_ref,
            request_tx=attempt.request_tx or "",
            handle=attempt.handle or "",
        )

    async def _check_withdrawable(self, employee: str) -> None:
        stream = await self._ledger.read_stream(employee)
        validate_transition(stream, StreamAction.WITHDRAW)
        block = await self._ledger.current_block_number()
        countdown = countdown_to_cliff(block, stream.cliff_block)
        if not countdown.reached:
            raise StreamLifecycleError(
                f"Cliff not reached for {employee} (block {block} < {stream.cliff_block}, "
                f"about {format_countdown(countdown)})"
            )


__all__ = [
    "WithdrawalPhase",
    "WithdrawalError",
    "WithdrawalAttempt",
    "WithdrawalResult",
    "WithdrawalOrchestrator",
    "extract_claimable_handle",
]
