# payroll_services/api/app.py
"""
Read-only payroll API.

Serves aggregate stream views, withdrawal history, bulk CSV previews and
health. It runs in the server context: nothing here opens a coprocessor
session, encrypts, decrypts or writes to the ledger.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from payroll_services import config as cfg
from payroll_services.api import health_checks as hc
from payroll_services.api.ledger_adapter import ScriptLedger
from payroll_services.api.logging_config import get_logger, setup_logging
from payroll_services.api.schemas_api import (
    BulkRowView,
    BulkValidateReq,
    BulkValidateRes,
    ClaimableView,
    StreamDetail,
    StreamList,
    StreamView,
    WithdrawalEventView,
    WithdrawalHistory,
)
from payroll_services.errors import LedgerCallFailed, PayrollError
from payroll_services.payroll import accrual
from payroll_services.payroll.csv_rows import generate_sample_csv, is_valid_address, parse_employee_csv
from payroll_services.payroll.ledger import PayrollLedger, ThreadedLedger
from payroll_services.payroll.streams import list_streams, withdrawal_history

logger = get_logger("api")

app = FastAPI(title="Confidential Payroll API", version="0.1.0")


@app.on_event("startup")
async def startup():
    setup_logging(cfg.LOG_LEVEL)
    logger.info("Payroll API started")


@lru_cache(maxsize=1)
def get_ledger() -> PayrollLedger:
    return ThreadedLedger(ScriptLedger())


@app.exception_handler(LedgerCallFailed)
async def _ledger_failed(_request: Request, exc: LedgerCallFailed):
    logger.error(f"Ledger call failed: {exc}")
    return JSONResponse(status_code=502, content={"detail": f"Ledger call failed: {exc}"})


def _require_address(address: str) -> str:
    if not is_valid_address(address):
        raise HTTPException(status_code=400, detail="Invalid Ethereum address")
    return address


# =========================
# Health
# =========================

@app.get("/health")
async def health():
    return await hc.comprehensive_health_check(rpc_url=cfg.RPC_URL, relayer_url=cfg.RELAYER_URL)


@app.get("/health/live")
async def health_live():
    return {"status": "alive" if await hc.liveness_check() else "dead"}


@app.get("/health/ready")
async def health_ready():
    if not await hc.readiness_check(cfg.RPC_URL):
        raise HTTPException(status_code=503, detail="Ledger RPC unavailable")
    return {"status": "ready"}


# =========================
# Streams
# =========================

@app.get("/streams", response_model=StreamList)
async def get_streams(ledger: PayrollLedger = Depends(get_ledger)):
    streams = await list_streams(ledger)
    current: Optional[int] = None
    try:
        current = await ledger.current_block_number()
    except PayrollError as e:
        logger.warning(f"Block number unavailable for stream list: {e}")
    return StreamList(current_block=current, streams=[StreamView.from_state(s) for s in streams])


@app.get("/streams/{address}", response_model=StreamDetail)
async def get_stream(address: str, ledger: PayrollLedger = Depends(get_ledger)):
    _require_address(address)
    stream = await ledger.read_stream(address)
    if not stream.exists:
        raise HTTPException(status_code=404, detail="No stream for this address")
    block = await ledger.current_block_number()
    countdown = accrual.countdown_to_cliff(block, stream.cliff_block)
    return StreamDetail(
        stream=StreamView.from_state(stream),
        current_block=block,
        withdrawable=accrual.is_withdrawable(stream, block),
        claimable=ClaimableView.from_estimate(accrual.estimated_claimable(stream, block)),
        **StreamDetail.countdown_fields(countdown),
    )


@app.get("/streams/{address}/withdrawals", response_model=WithdrawalHistory)
async def get_withdrawals(address: str, ledger: PayrollLedger = Depends(get_ledger)):
    _require_address(address)
    events = await withdrawal_history(ledger, address)
    return WithdrawalHistory(employee=address, events=[WithdrawalEventView.from_event(e) for e in events])


# =========================
# Bulk CSV
# =========================

@app.post("/bulk/validate", response_model=BulkValidateRes)
def bulk_validate(req: BulkValidateReq):
    parsed = parse_employee_csv(req.csv)
    return BulkValidateRes(
        rows=[BulkRowView.from_row(r) for r in parsed.rows],
        valid_count=len(parsed.valid_rows),
        invalid_count=len(parsed.invalid_rows),
        errors=parsed.errors,
    )


@app.get("/bulk/template", response_class=PlainTextResponse)
def bulk_template():
    return PlainTextResponse(
        generate_sample_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="employees_template.csv"'},
    )
