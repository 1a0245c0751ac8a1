# payroll_services/payroll/ledger.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from payroll_services.payroll.streams import StreamState, WithdrawalEvent


@dataclass(frozen=True)
class LedgerReceipt:
    """Confirmed write: transaction hash plus decoded event logs."""

    tx_hash: str
    logs: List[Dict[str, Any]] = field(default_factory=list)


class PayrollLedger(Protocol):
    async def read_stream(self, employee: str) -> StreamState: ...

    async def request_claimable_amount(self, employee: str) -> LedgerReceipt: ...

    async def submit_withdrawal(self, employee: str, amount: int) -> str: ...

    async def create_stream(
        self, employee: str, handle: str, proof: str, start_block: int, cliff_block: int
    ) -> str: ...

    async def current_block_number(self) -> int: ...

    async def pause_stream(self, employee: str) -> str: ...

    async def resume_stream(self, employee: str) -> str: ...

    async def cancel_stream(self, employee: str) -> str: ...

    async def list_employees(self) -> List[str]: ...

    async def withdrawal_history(self, employee: str) -> List[WithdrawalEvent]: ...

    async def has_role(self, role: str, account: str) -> bool: ...

    async def grant_role(self, role: str, account: str) -> str: ...

    async def request_attestation(self, employee: str) -> str: ...


class ThreadedLedger:
    """
    Async PayrollLedger over a blocking adapter (e.g. ScriptLedger).

    Each call runs in a worker thread so the event loop keeps serving other
    awaiters while a contract script is running.
    """

    def __init__(self, sync_ledger: Any):
        self._sync = sync_ledger

    async def _call(self, name: str, *args):
        return await asyncio.to_thread(getattr(self._sync, name), *args)

    async def read_stream(self, employee: str) -> StreamState:
        return await self._call("read_stream", employee)

    async def request_claimable_amount(self, employee: str) -> LedgerReceipt:
        return await self._call("request_claimable_amount", employee)

    async def submit_withdrawal(self, employee: str, amount: int) -> str:
        return await self._call("submit_withdrawal", employee, amount)

    async def create_stream(
        self, employee: str, handle: str, proof: str, start_block: int, cliff_block: int
    ) -> str:
        return await self._call("create_stream", employee, handle, proof, start_block, cliff_block)

    async def current_block_number(self) -> int:
        return await self._call("current_block_number")

    async def pause_stream(self, employee: str) -> str:
        return await self._call("pause_stream", employee)

    async def resume_stream(self, employee: str) -> str:
        return await self._call("resume_stream", employee)

    async def cancel_stream(self, employee: str) -> str:
        return await self._call("cancel_stream", employee)

    async def list_employees(self) -> List[str]:
        return await self._call("list_employees")

    async def withdrawal_history(self, employee: str) -> List[WithdrawalEvent]:
        return await self._call("withdrawal_history", employee)

    async def has_role(self, role: str, account: str) -> bool:
        return await self._call("has_role", role, account)

    async def grant_role(self, role: str, account: str) -> str:
        return await self._call("grant_role", role, account)

    async def request_attestation(self, employee: str) -> str:
        return await self._call("request_attestation", employee)
