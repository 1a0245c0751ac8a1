"""
Stream creation (single HR form and bulk CSV).

Rows are provisioned strictly one after another: writes share one
nonce-ordered sender, and each row's duplicate check has to see the writes of
the rows before it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from payroll_services import config as cfg
from payroll_services.api.logging_config import get_logger
from payroll_services.errors import DuplicateStream, describe_error
from payroll_services.fhe_core.encrypt import CiphertextEncryptor
from payroll_services.payroll.csv_rows import BulkRow, is_valid_address
from payroll_services.payroll.ledger import PayrollLedger

logger = get_logger("payroll.provisioning")


@dataclass(frozen=True)
class CreatedStream:
    employee: str
    tx_ref: str
    start_block: int
    cliff_block: int


@dataclass(frozen=True)
class Progress:
    current: int
    total: int


@dataclass(frozen=True)
class ProvisionFailure:
    address: str
    line_number: int
    error: BaseException

    @property
    def reason(self) -> str:
        return describe_error(self.error)


@dataclass
class ProvisionReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[ProvisionFailure] = field(default_factory=list)
    # rows with validation errors; never submitted
    excluded: List[BulkRow] = field(default_factory=list)
    created: Dict[str, CreatedStream] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


ProgressCallback = Callable[[Progress], None]


class StreamProvisioner:
    def __init__(
        self,
        ledger: PayrollLedger,
        encryptor: CiphertextEncryptor,
        contract_address: str,
        hr_address: str,
        auto_start_offset: int = cfg.AUTO_START_OFFSET_BLOCKS,
    ):
        self._ledger = ledger
        self._encryptor = encryptor
        self.contract_address = contract_address
        self.hr_address = hr_address
        self.auto_start_offset = auto_start_offset

    async def resolve_start_block(self, start_block: Optional[int]) -> int:
        if start_block is not None:
            return int(start_block)
        return int(await self._ledger.current_block_number()) + self.auto_start_offset

    async def create_stream(
        self,
        employee: str,
        rate_per_block_wei: int,
        start_block: Optional[int],
        cliff_blocks: int,
    ) -> CreatedStream:
        """
        Create one stream. start_block=None means "auto" (current block + offset).

        Raises:
            ValueError: bad address, rate or cliff
            DuplicateStream: the employee already has a stream
            EncryptionError / LedgerCallFailed: downstream failures
        """
        if not is_valid_address(employee):
            raise ValueError(f"Invalid Ethereum address: {employee!r}")
        if rate_per_block_wei <= 0:
            raise ValueError("Salary per block must be positive")
        if cliff_blocks < 0:
            raise ValueError("Cliff period cannot be negative")

        existing = await self._ledger.read_stream(employee)
        if existing.exists:
            raise DuplicateStream(employee)

        start = await self.resolve_start_block(start_block)
        cliff = start + int(cliff_blocks)
        payload = await self._encryptor.encrypt(rate_per_block_wei, self.contract_address, self.hr_address)
        tx = await self._ledger.create_stream(employee, payload.handle_hex, payload.proof_hex, start, cliff)
        logger.info("Stream created for %s (start=%d cliff=%d tx=%s)", employee, start, cliff, tx)
        return CreatedStream(employee=employee, tx_ref=tx, start_block=start, cliff_block=cliff)

    async def provision(
        self, rows: Iterable[BulkRow], on_progress: Optional[ProgressCallback] = None
    ) -> ProvisionReport:
        report = ProvisionReport()
        pending: List[BulkRow] = []
        for row in rows:
            (pending if row.valid else report.excluded).append(row)
        for row in report.excluded:
            logger.warning("Skipping row %d: %s", row.line_number, "; ".join(row.errors))

        total = len(pending)
        logger.info("Provisioning %d stream(s), %d row(s) excluded", total, len(report.excluded))
        for i, row in enumerate(pending, start=1):
            try:
                created = await self.create_stream(
                    row.address, row.rate_per_block_wei, row.start_block, row.cliff_blocks
                )
            except Exception as e:
                logger.error("Row %d (%s) failed: %s", row.line_number, row.address, e)
                report.failed.append(ProvisionFailure(row.address, row.line_number, e))
            else:
                report.succeeded.append(row.address)
                report.created[row.address] = created
            if on_progress is not None:
                on_progress(Progress(current=i, total=total))

        logger.info(
            "Provisioning finished: %d succeeded, %d failed", len(report.succeeded), len(report.failed)
        )
        return report


__all__ = [
    "CreatedStream",
    "Progress",
    "ProvisionFailure",
    "ProvisionReport",
    "StreamProvisioner",
]
