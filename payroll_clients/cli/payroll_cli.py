#!/usr/bin/env python3
# payroll_clients/cli/payroll_cli.py
# Interactive client for confidential salary streams: employee withdrawals and
# HR provisioning. Runs in the "client" execution context.

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from payroll_services import config as cfg
from payroll_services.api.ledger_adapter import ScriptLedger
from payroll_services.api.logging_config import setup_logging
from payroll_services.config import NetworkConfig
from payroll_services.errors import PayrollError, describe_error
from payroll_services.fhe_core.decrypt import DecryptionClient
from payroll_services.fhe_core.encrypt import CiphertextEncryptor
from payroll_services.fhe_core.session import SessionManager
from payroll_services.fhe_core.signer import RpcWalletSigner
from payroll_services.payroll import accrual
from payroll_services.payroll.csv_rows import eth_to_wei, generate_sample_csv, is_valid_address, parse_employee_csv
from payroll_services.payroll.ledger import PayrollLedger, ThreadedLedger
from payroll_services.payroll.provisioning import Progress, StreamProvisioner
from payroll_services.payroll.streams import StreamAdmin, list_streams, reveal_stream, withdrawal_history
from payroll_services.payroll.withdrawal import WithdrawalAttempt, WithdrawalOrchestrator, WithdrawalPhase


# ======== Color accents (no deps) ========
class C:
    OK   = "\033[92m"
    WARN = "\033[93m"
    ERR  = "\033[91m"
    DIM  = "\033[2m"
    BOLD = "\033[1m"
    RST  = "\033[0m"


def _short(addr: str) -> str:
    return f"{addr[:6]}…{addr[-4:]}" if addr and len(addr) > 12 else addr


def _fmt_eth(wei: int) -> str:
    whole, frac = divmod(int(wei), cfg.WEI_PER_ETH)
    return f"{whole}.{frac:018d}".rstrip("0").rstrip(".") + " ETH"


# ======== Wiring ========
@dataclass
class PayrollClient:
    address: str
    ledger: PayrollLedger
    sessions: SessionManager
    encryptor: CiphertextEncryptor
    decryptor: DecryptionClient

    @classmethod
    def build(cls, address: str) -> "PayrollClient":
        sessions = SessionManager(NetworkConfig.from_env())
        signer = RpcWalletSigner(cfg.WALLET_RPC_URL, address)
        return cls(
            address=address,
            ledger=ThreadedLedger(ScriptLedger()),
            sessions=sessions,
            encryptor=CiphertextEncryptor(sessions),
            decryptor=DecryptionClient(sessions, signer),
        )

    async def aclose(self) -> None:
        await self.sessions.aclose()


def _require_wallet(args) -> str:
    if not args.wallet:
        print(f"{C.ERR}No wallet address: pass --wallet or set PAYROLL_WALLET_ADDRESS.{C.RST}")
        sys.exit(2)
    return args.wallet


async def _require_hr(client: PayrollClient) -> None:
    if not await client.ledger.has_role(cfg.HR_ROLE, client.address):
        print(f"{C.ERR}{_short(client.address)} does not hold {cfg.HR_ROLE}.{C.RST}")
        sys.exit(1)


# ======== Employee flows ========
async def flow_status(client: PayrollClient, employee: str, reveal: bool) -> None:
    print("\n=== STREAM STATUS ===")
    stream = await client.ledger.read_stream(employee)
    if not stream.exists:
        print(f"{C.WARN}No stream for {employee}.{C.RST}")
        return
    block = await client.ledger.current_block_number()
    if reveal:
        stream = await reveal_stream(stream, client.decryptor, cfg.PAYROLL_CONTRACT_ADDRESS, client.address)

    countdown = accrual.countdown_to_cliff(block, stream.cliff_block)
    estimate = accrual.estimated_claimable(stream, block)
    print(f"Employee      : {employee}")
    print(f"Status        : {stream.status}")
    print(f"Start block   : {stream.start_block}")
    print(f"Cliff block   : {stream.cliff_block}  (current {block})")
    if not countdown.reached:
        eta = accrual.estimated_cliff_time(countdown)
        print(f"Cliff in      : {accrual.format_countdown(countdown)}  {C.DIM}~{eta:%Y-%m-%d %H:%M} UTC{C.RST}")
    else:
        print(f"Cliff         : {C.OK}{accrual.format_countdown(countdown)}{C.RST}")
    if isinstance(stream.rate_per_block, int):
        print(f"Rate          : {_fmt_eth(stream.rate_per_block)} / block")
    else:
        print(f"Rate          : {C.DIM}encrypted ({_short(str(stream.rate_per_block))}){C.RST}")
    if estimate.known:
        print(f"Claimable est.: {_fmt_eth(estimate.amount)}")
    else:
        print(f"Claimable est.: {C.DIM}encrypted (use --reveal to decrypt){C.RST}")
    mark = f"{C.OK}yes{C.RST}" if accrual.is_withdrawable(stream, block) else f"{C.WARN}no{C.RST}"
    print(f"Withdrawable  : {mark}")


def _print_phase(attempt: WithdrawalAttempt) -> None:
    if attempt.phase is WithdrawalPhase.FAILED:
        print(f"{C.ERR}✗ {attempt.failed_phase.label} failed{C.RST}")
    elif attempt.phase is WithdrawalPhase.SUCCEEDED:
        print(f"{C.OK}✓ Withdrawal confirmed{C.RST}")
    else:
        print(f"… {attempt.phase.label}")


async def flow_withdraw(client: PayrollClient) -> None:
    print("\n=== WITHDRAW ===")
    orch = WithdrawalOrchestrator(client.ledger, client.decryptor, cfg.PAYROLL_CONTRACT_ADDRESS)
    result = await orch.withdraw(client.address, on_phase=_print_phase)
    print(f"Amount : {_fmt_eth(result.amount)}")
    print(f"Tx     : {result.tx_ref}")


async def flow_history(client: PayrollClient, employee: str) -> None:
    events = await withdrawal_history(client.ledger, employee)
    print(f"\n=== WITHDRAWALS for {_short(employee)} ({len(events)}) ===")
    for ev in events:
        print(f"block {ev.block_number:<10} {_fmt_eth(ev.amount):>24}  {C.DIM}{ev.tx_hash}{C.RST}")


async def flow_attest(client: PayrollClient) -> None:
    tx = await client.ledger.request_attestation(client.address)
    print(f"{C.OK}Income attestation requested{C.RST}; the oracle is processing your encrypted salary.")
    print(f"Tx : {tx}")


# ======== HR flows ========
async def flow_create(client: PayrollClient, employee: str, salary_eth: str, start: str, cliff_blocks: int) -> None:
    await _require_hr(client)
    try:
        rate = eth_to_wei(salary_eth)
    except ValueError as e:
        print(f"{C.ERR}Invalid salary: {e}{C.RST}")
        sys.exit(2)
    start_block = None if start.lower() in ("", "auto") else int(start)
    prov = StreamProvisioner(client.ledger, client.encryptor, cfg.PAYROLL_CONTRACT_ADDRESS, client.address)
    created = await prov.create_stream(employee, rate, start_block, cliff_blocks)
    print(f"{C.OK}Stream created{C.RST} for {employee}")
    print(f"Start/cliff : {created.start_block} / {created.cliff_block}")
    print(f"Tx          : {created.tx_ref}")


async def flow_bulk(client: PayrollClient, csv_path: Path, dry_run: bool) -> int:
    parsed = parse_employee_csv(csv_path.read_text(encoding="utf-8"))
    for err in parsed.errors:
        print(f"{C.ERR}{err}{C.RST}")
    if parsed.errors:
        return 1
    for row in parsed.invalid_rows:
        print(f"{C.WARN}Row {row.line_number}: {'; '.join(row.errors)}{C.RST}")
    print(f"{len(parsed.valid_rows)} valid row(s), {len(parsed.invalid_rows)} invalid.")
    if dry_run or not parsed.valid_rows:
        return 0 if not parsed.invalid_rows else 1

    await _require_hr(client)
    prov = StreamProvisioner(client.ledger, client.encryptor, cfg.PAYROLL_CONTRACT_ADDRESS, client.address)

    def tick(p: Progress) -> None:
        print(f"{C.DIM}[{p.current:03d}/{p.total:03d}]{C.RST}")

    report = await prov.provision(parsed.rows, on_progress=tick)
    print(f"\n{C.OK}{len(report.succeeded)} created{C.RST}, {C.ERR}{len(report.failed)} failed{C.RST}")
    for f in report.failed:
        print(f"  row {f.line_number} {_short(f.address)}: {f.reason}")
    return 0 if not report.failed and not report.excluded else 1


async def flow_admin(client: PayrollClient, action: str, employee: str) -> None:
    await _require_hr(client)
    admin = StreamAdmin(client.ledger)
    tx = await getattr(admin, action)(employee)
    done = {"pause": "paused", "resume": "resumed", "cancel": "canceled"}[action]
    print(f"{C.OK}Stream {done}{C.RST} for {employee}  {C.DIM}{tx}{C.RST}")


async def flow_grant_hr(client: PayrollClient, account: str) -> None:
    if not is_valid_address(account):
        print(f"{C.ERR}Invalid Ethereum address: {account}{C.RST}")
        sys.exit(2)
    if not await client.ledger.has_role(cfg.DEFAULT_ADMIN_ROLE, client.address):
        print(f"{C.ERR}{_short(client.address)} needs DEFAULT_ADMIN_ROLE to grant roles.{C.RST}")
        sys.exit(1)
    if await client.ledger.has_role(cfg.HR_ROLE, account):
        print(f"{C.WARN}{account} already holds {cfg.HR_ROLE}.{C.RST}")
        return
    tx = await client.ledger.grant_role(cfg.HR_ROLE, account)
    print(f"{C.OK}{cfg.HR_ROLE} granted{C.RST} to {account}  {C.DIM}{tx}{C.RST}")


async def flow_streams(client: PayrollClient) -> None:
    streams = await list_streams(client.ledger)
    print(f"\n=== STREAMS ({len(streams)}) ===")
    for s in streams:
        print(f"{s.employee}  {s.status:<9} start={s.start_block:<10} cliff={s.cliff_block}")


# ======== Entry point ========
def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Confidential payroll client")
    p.add_argument("--wallet", default=cfg.WALLET_ADDRESS, help="Signing wallet address")
    p.add_argument("--log-level", default=cfg.LOG_LEVEL)
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("status", help="Show a stream with cliff countdown and claimable estimate")
    s.add_argument("address", nargs="?", help="Employee (default: --wallet)")
    s.add_argument("--reveal", action="store_true", help="Decrypt your own rate and claimed amount")

    sub.add_parser("withdraw", help="Withdraw everything claimable for --wallet")

    s = sub.add_parser("create", help="Create one stream (HR)")
    s.add_argument("employee")
    s.add_argument("salary_per_block", help="ETH per block, e.g. 0.001")
    s.add_argument("--start", default="auto", help="Start block or 'auto'")
    s.add_argument("--cliff", type=int, default=cfg.DEFAULT_CLIFF_BLOCKS, help="Cliff length in blocks")

    s = sub.add_parser("bulk", help="Create streams from a CSV file (HR)")
    s.add_argument("csv", type=Path)
    s.add_argument("--dry-run", action="store_true", help="Validate only")

    for action in ("pause", "resume", "cancel"):
        s = sub.add_parser(action, help=f"{action.capitalize()} a stream (HR)")
        s.add_argument("employee")

    s = sub.add_parser("history", help="Withdrawal history, most recent first")
    s.add_argument("address", nargs="?")

    sub.add_parser("streams", help="List all streams")

    sub.add_parser("attest", help="Request an income attestation for --wallet")

    s = sub.add_parser("grant-hr", help="Grant HR_ROLE to an account (admin)")
    s.add_argument("account")

    s = sub.add_parser("template", help="Write a sample bulk CSV")
    s.add_argument("-o", "--output", type=Path, help="File to write (default: stdout)")
    return p


async def _dispatch(args) -> int:
    if args.cmd == "template":
        text = generate_sample_csv()
        if args.output:
            args.output.write_text(text, encoding="utf-8")
            print(f"{C.OK}Wrote {args.output}{C.RST}")
        else:
            print(text, end="")
        return 0

    wallet = _require_wallet(args)
    client = PayrollClient.build(wallet)
    try:
        if args.cmd == "status":
            await flow_status(client, args.address or wallet, args.reveal)
        elif args.cmd == "withdraw":
            await flow_withdraw(client)
        elif args.cmd == "create":
            await flow_create(client, args.employee, args.salary_per_block, args.start, args.cliff)
        elif args.cmd == "bulk":
            return await flow_bulk(client, args.csv, args.dry_run)
        elif args.cmd in ("pause", "resume", "cancel"):
            await flow_admin(client, args.cmd, args.employee)
        elif args.cmd == "history":
            await flow_history(client, args.address or wallet)
        elif args.cmd == "streams":
            await flow_streams(client)
        elif args.cmd == "attest":
            await flow_attest(client)
        elif args.cmd == "grant-hr":
            await flow_grant_hr(client, args.account)
        return 0
    finally:
        await client.aclose()


def main(argv: Optional[list] = None) -> int:
    args = _parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(_dispatch(args))
    except PayrollError as e:
        print(f"{C.ERR}{describe_error(e)}{C.RST}")
        return 1
    except ValueError as e:
        print(f"{C.ERR}{e}{C.RST}")
        return 2


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user."); sys.exit(130)
