# payroll_services/payroll/csv_rows.py
from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import List, Optional

from payroll_services.config import U128_MAX, WEI_PER_ETH
from payroll_services.errors import RowValidationError

REQUIRED_COLUMNS = ["address", "salaryPerBlock", "startBlock", "cliffBlocks"]
AUTO_START = "auto"
ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: str) -> bool:
    return bool(address) and ADDRESS_RE.match(address) is not None


def eth_to_wei(amount: str) -> int:
    """
    "0.001" -> 1_000_000_000_000_000. Decimal only; anything below 1 wei is
    dropped. Raises ValueError for non-numbers and for results <= 0 wei.
    """
    try:
        d = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"not a number: {amount!r}") from e
    if not d.is_finite():
        raise ValueError(f"not a finite number: {amount!r}")
    try:
        wei = int((d * WEI_PER_ETH).to_integral_value(rounding=ROUND_DOWN))
    except ArithmeticError as e:
        raise ValueError(f"amount out of range: {amount!r}") from e
    if wei <= 0:
        raise ValueError(f"amount must be at least 1 wei: {amount!r}")
    if wei > U128_MAX:
        raise ValueError(f"amount exceeds the 128-bit range: {amount!r}")
    return wei


@dataclass
class BulkRow:
    line_number: int
    address: str
    rate_per_block_wei: int = 0
    # None means "auto": resolved to current block + offset at submission time
    start_block: Optional[int] = None
    cliff_blocks: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def auto_start(self) -> bool:
        return self.start_block is None

    def validation_error(self) -> RowValidationError:
        return RowValidationError(self.line_number, self.errors)


@dataclass
class CsvParseResult:
    rows: List[BulkRow]
    errors: List[str] = field(default_factory=list)

    @property
    def valid_rows(self) -> List[BulkRow]:
        return [r for r in self.rows if r.valid]

    @property
    def invalid_rows(self) -> List[BulkRow]:
        return [r for r in self.rows if not r.valid]


def _parse_row(line_number: int, raw: dict) -> BulkRow:
    address = (raw.get("address") or "").strip()
    row = BulkRow(line_number=line_number, address=address)

    if not is_valid_address(address):
        row.errors.append("Invalid Ethereum address")

    try:
        row.rate_per_block_wei = eth_to_wei(raw.get("salaryPerBlock") or "")
    except ValueError:
        row.errors.append("Invalid salary amount")

    start = (raw.get("startBlock") or "").strip()
    if start and start.lower() != AUTO_START:
        try:
            row.start_block = int(start)
            if row.start_block < 0:
                raise ValueError(start)
        except ValueError:
            row.start_block = None
            row.errors.append("Invalid start block")

    try:
        row.cliff_blocks = int((raw.get("cliffBlocks") or "").strip())
        if row.cliff_blocks < 0:
            raise ValueError(row.cliff_blocks)
    except ValueError:
        row.cliff_blocks = 0
        row.errors.append("Invalid cliff period")

    return row


def parse_employee_csv(text: str) -> CsvParseResult:
    """
    Parse bulk upload CSV. Line numbers are 1-based file lines (header is 1).
    Repeated addresses are flagged on every occurrence after the first.
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in REQUIRED_COLUMNS if c not in headers]
    if missing:
        return CsvParseResult(rows=[], errors=[f"Missing required columns: {', '.join(missing)}"])
    reader.fieldnames = headers

    rows: List[BulkRow] = []
    seen = {}
    for raw in reader:
        if not any((v or "").strip() for v in raw.values() if isinstance(v, str)):
            continue
        row = _parse_row(reader.line_num, raw)
        key = row.address.lower()
        if key and key in seen:
            row.errors.append(f"Duplicate address (first seen on row {seen[key]})")
        elif key:
            seen[key] = row.line_number
        rows.append(row)
    return CsvParseResult(rows=rows)


SAMPLE_ROWS = [
    ("0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb1", "0.001", AUTO_START, "100"),
    ("0x5aeda56215b167893e80b4fe645ba6d5bab767de", "0.002", "1000", "200"),
    ("0x1234567890123456789012345678901234567890", "0.0015", AUTO_START, "150"),
]


def generate_sample_csv() -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(REQUIRED_COLUMNS)
    writer.writerows(SAMPLE_ROWS)
    return buf.getvalue()


__all__ = [
    "REQUIRED_COLUMNS",
    "AUTO_START",
    "is_valid_address",
    "eth_to_wei",
    "BulkRow",
    "CsvParseResult",
    "parse_employee_csv",
    "generate_sample_csv",
]
