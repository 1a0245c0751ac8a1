# payroll_services/api/ledger_adapter.py
from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from payroll_services import config as cfg
from payroll_services.api.logging_config import get_logger
from payroll_services.api.subprocess_retry import SubprocessRetryError, run_json_script_with_retry
from payroll_services.errors import DuplicateStream, LedgerCallFailed
from payroll_services.payroll.ledger import LedgerReceipt
from payroll_services.payroll.streams import StreamState, WithdrawalEvent

LOG = get_logger("ledger_adapter")

READ_RETRIES = 3
_DUPLICATE_RE = re.compile(r"stream (already )?exists|already has (an? )?(active )?stream|duplicate stream", re.I)


# ===== Helpers =====
def role_id(role: str) -> str:
    """bytes32 role id as the payroll contract stores it: ASCII name, left-padded with zeros."""
    if role.startswith("0x") and len(role) == 66:
        return role.lower()
    return "0x" + role.encode().hex().rjust(64, "0")


def _error_text(out: Dict[str, Any]) -> str:
    err = out.get("error") or out.get("reason") or "unknown error"
    if isinstance(err, dict):
        err = err.get("message") or json.dumps(err)
    return str(err)


def _tx_hash(out: Dict[str, Any], method: str) -> str:
    tx = out.get("txHash")
    if not tx:
        raise LedgerCallFailed(f"{method} returned no transaction hash")
    return str(tx)


class ScriptLedger:
    """
    Blocking payroll ledger backed by a contract-call script.

    Invocation: <script...> <method> '<json args>'; the script prints one JSON
    object with "success" plus method-specific fields. Reads are retried;
    writes run exactly once.
    """

    def __init__(
        self,
        script_cmd: Optional[List[str]] = None,
        cwd: Optional[Path] = None,
        rpc_url: Optional[str] = None,
        contract_address: Optional[str] = None,
        timeout: Optional[int] = None,
        http: Optional[requests.Session] = None,
        income_oracle_address: Optional[str] = None,
    ):
        self.script_cmd = list(script_cmd or cfg.ledger_script_cmd())
        self.cwd = cwd or cfg.LEDGER_CWD
        self.rpc_url = rpc_url or cfg.RPC_URL
        self.contract_address = contract_address if contract_address is not None else cfg.PAYROLL_CONTRACT_ADDRESS
        self.timeout = timeout or cfg.SCRIPT_TIMEOUT_SEC
        self.income_oracle_address = (
            income_oracle_address if income_oracle_address is not None else cfg.INCOME_ORACLE_ADDRESS
        )
        self._http = http or requests.Session()

    # ----- plumbing -----
    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.contract_address:
            env["PAYROLL_CONTRACT_ADDRESS"] = self.contract_address
        env["PAYROLL_RPC_URL"] = self.rpc_url
        return env

    def _call(self, method: str, args: Dict[str, Any], write: bool = False) -> Dict[str, Any]:
        cmd = self.script_cmd + [method, json.dumps(args)]
        try:
            out = run_json_script_with_retry(
                cmd,
                max_retries=1 if write else READ_RETRIES,
                timeout=self.timeout,
                cwd=self.cwd,
                env=self._env(),
                description=f"ledger {method}",
            )
        except SubprocessRetryError as e:
            LOG.error("ledger %s failed: %s", method, e)
            raise LedgerCallFailed(f"{method} failed: {e}", e) from e

        if not out.get("success"):
            msg = _error_text(out)
            LOG.error("ledger %s reverted: %s", method, msg)
            raise LedgerCallFailed(f"{method} failed: {msg}")
        return out

    def _rpc(self, method: str, params: Optional[list] = None) -> Any:
        try:
            r = self._http.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []},
                timeout=10,
            )
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            raise LedgerCallFailed(f"RPC {method} failed: {e}", e) from e
        if not isinstance(body, dict) or "error" in body:
            raise LedgerCallFailed(f"RPC {method} error: {body.get('error') if isinstance(body, dict) else body}")
        return body.get("result")

    # ===== Reads =====
    def read_stream(self, employee: str) -> StreamState:
        out = self._call("readStream", {"employee": employee})
        return StreamState.from_ledger(employee, out.get("stream") or {})

    def current_block_number(self) -> int:
        result = self._rpc("eth_blockNumber")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise LedgerCallFailed(f"bad eth_blockNumber result: {result!r}", e) from e

    def list_employees(self) -> List[str]:
        out = self._call("listEmployees", {})
        return [str(a) for a in out.get("employees", [])]

    def withdrawal_history(self, employee: str) -> List[WithdrawalEvent]:
        out = self._call("withdrawalHistory", {"employee": employee})
        events: List[WithdrawalEvent] = []
        for raw in out.get("events", []):
            try:
                events.append(WithdrawalEvent.from_ledger(raw))
            except (KeyError, TypeError, ValueError) as e:
                raise LedgerCallFailed(f"malformed withdrawal event: {raw!r}", e) from e
        return events

    def has_role(self, role: str, account: str) -> bool:
        out = self._call("hasRole", {"role": role_id(role), "account": account})
        return bool(out.get("hasRole"))

    # ===== Writes =====
    def request_claimable_amount(self, employee: str) -> LedgerReceipt:
        out = self._call("requestWithdrawal", {"employee": employee}, write=True)
        return LedgerReceipt(tx_hash=str(out.get("txHash", "")), logs=list(out.get("logs") or []))

    def submit_withdrawal(self, employee: str, amount: int) -> str:
        # decimal string: the script runtime reads JSON numbers as doubles
        out = self._call("submitWithdrawal", {"employee": employee, "amount": str(int(amount))}, write=True)
        return _tx_hash(out, "submitWithdrawal")

    def create_stream(self, employee: str, handle: str, proof: str, start_block: int, cliff_block: int) -> str:
        args = {
            "employee": employee,
            "encryptedSalary": handle,
            "inputProof": proof,
            "startBlock": int(start_block),
            "cliffBlock": int(cliff_block),
        }
        try:
            out = self._call("createStream", args, write=True)
        except LedgerCallFailed as e:
            if _DUPLICATE_RE.search(str(e)):
                raise DuplicateStream(employee) from e
            raise
        return _tx_hash(out, "createStream")

    def pause_stream(self, employee: str) -> str:
        return _tx_hash(self._call("pauseStream", {"employee": employee}, write=True), "pauseStream")

    def resume_stream(self, employee: str) -> str:
        return _tx_hash(self._call("resumeStream", {"employee": employee}, write=True), "resumeStream")

    def cancel_stream(self, employee: str) -> str:
        return _tx_hash(self._call("cancelStream", {"employee": employee}, write=True), "cancelStream")

    def grant_role(self, role: str, account: str) -> str:
        out = self._call("grantRole", {"role": role_id(role), "account": account}, write=True)
        return _tx_hash(out, "grantRole")

    def request_attestation(self, employee: str) -> str:
        """Targets the income oracle contract, not the payroll contract."""
        if not self.income_oracle_address:
            raise LedgerCallFailed("requestAttestation failed: PAYROLL_INCOME_ORACLE_ADDRESS is not set")
        args = {"oracle": self.income_oracle_address, "employee": employee}
        return _tx_hash(self._call("requestAttestation", args, write=True), "requestAttestation")


__all__ = ["ScriptLedger", "role_id"]
