"""
Tests for the script-backed ledger adapter

Verifies:
- Method names, JSON arguments and retry counts passed to the script
- Script JSON decoding into StreamState / WithdrawalEvent / receipts
- Reverts become LedgerCallFailed, duplicate reverts become DuplicateStream
- Block number read over JSON-RPC
"""
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import ALICE, HANDLE
from payroll_services.api.ledger_adapter import ScriptLedger, role_id
from payroll_services.api.subprocess_retry import SubprocessRetryError
from payroll_services.errors import DuplicateStream, LedgerCallFailed
from payroll_services.payroll.ledger import ThreadedLedger
from payroll_services.payroll.streams import CiphertextHandle

SCRIPT = "payroll_services.api.ledger_adapter.run_json_script_with_retry"


def _ledger(http=None):
    return ScriptLedger(
        script_cmd=["npx", "tsx", "scripts/payroll.ts"],
        rpc_url="http://rpc.test",
        contract_address="0x" + "c0" * 20,
        timeout=30,
        http=http or MagicMock(),
    )


def _rpc_session(body=None, exc=None):
    http = MagicMock()
    if exc is not None:
        http.post.side_effect = exc
    else:
        resp = MagicMock()
        resp.json.return_value = body
        http.post.return_value = resp
    return http


class TestScriptInvocation:
    """Command line and retry policy."""

    def test_read_uses_retries(self):
        with patch(SCRIPT, return_value={"success": True, "employees": [ALICE]}) as run:
            assert _ledger().list_employees() == [ALICE]

        cmd = run.call_args.args[0]
        assert cmd[:3] == ["npx", "tsx", "scripts/payroll.ts"]
        assert cmd[3] == "listEmployees"
        assert json.loads(cmd[4]) == {}
        assert run.call_args.kwargs["max_retries"] == 3
        env = run.call_args.kwargs["env"]
        assert env["PAYROLL_CONTRACT_ADDRESS"] == "0x" + "c0" * 20
        assert env["PAYROLL_RPC_URL"] == "http://rpc.test"

    def test_write_runs_once(self):
        with patch(SCRIPT, return_value={"success": True, "txHash": "0xabc"}) as run:
            assert _ledger().pause_stream(ALICE) == "0xabc"
        assert run.call_args.args[0][3] == "pauseStream"
        assert run.call_args.kwargs["max_retries"] == 1

    def test_subprocess_failure_is_ledger_error(self):
        with patch(SCRIPT, side_effect=SubprocessRetryError("exit code 1")):
            with pytest.raises(LedgerCallFailed) as exc_info:
                _ledger().list_employees()
        assert isinstance(exc_info.value.cause, SubprocessRetryError)

    def test_through_subprocess_run(self):
        out = _done('{"success": true, "hasRole": true}')
        with patch("payroll_services.api.subprocess_retry.subprocess.run", return_value=out) as run:
            assert _ledger().has_role("HR_ROLE", ALICE) is True
        args = json.loads(run.call_args.args[0][-1])
        assert args == {"role": role_id("HR_ROLE"), "account": ALICE}


def _done(stdout):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class TestReads:
    def test_read_stream(self):
        data = {
            "success": True,
            "stream": {
                "salaryPerBlock": HANDLE,
                "startBlock": 1000,
                "cliffBlock": 1100,
                "claimedAmount": "0",
                "isPaused": False,
                "isCanceled": False,
                "exists": True,
            },
        }
        with patch(SCRIPT, return_value=data):
            s = _ledger().read_stream(ALICE)
        assert s.rate_per_block == CiphertextHandle(HANDLE)
        assert s.claimed_amount == 0
        assert s.cliff_block == 1100

    def test_read_missing_stream(self):
        with patch(SCRIPT, return_value={"success": True, "stream": {"exists": False}}):
            assert not _ledger().read_stream(ALICE).exists

    def test_withdrawal_history(self):
        ev = {"employee": ALICE, "amount": "5", "blockNumber": 9, "transactionHash": "0x9", "timestamp": 1}
        with patch(SCRIPT, return_value={"success": True, "events": [ev]}):
            events = _ledger().withdrawal_history(ALICE)
        assert events[0].amount == 5

    def test_malformed_event(self):
        with patch(SCRIPT, return_value={"success": True, "events": [{"employee": ALICE}]}):
            with pytest.raises(LedgerCallFailed):
                _ledger().withdrawal_history(ALICE)

    def test_block_number(self):
        http = _rpc_session({"jsonrpc": "2.0", "id": 1, "result": "0x47e"})
        assert _ledger(http).current_block_number() == 1150
        payload = http.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_blockNumber"

    def test_block_number_rpc_error(self):
        http = _rpc_session({"error": {"code": -32000, "message": "bad"}})
        with pytest.raises(LedgerCallFailed):
            _ledger(http).current_block_number()

    def test_block_number_unreachable(self):
        http = _rpc_session(exc=requests.ConnectionError("refused"))
        with pytest.raises(LedgerCallFailed, match="refused"):
            _ledger(http).current_block_number()


class TestWrites:
    def test_request_withdrawal_receipt(self):
        logs = [{"eventName": "WithdrawalReady", "args": {"claimableHandle": HANDLE}}]
        with patch(SCRIPT, return_value={"success": True, "txHash": "0x1", "logs": logs}):
            receipt = _ledger().request_claimable_amount(ALICE)
        assert receipt.tx_hash == "0x1"
        assert receipt.logs == logs

    def test_submit_sends_amount_as_string(self):
        with patch(SCRIPT, return_value={"success": True, "txHash": "0x2"}) as run:
            _ledger().submit_withdrawal(ALICE, 2**100)
        assert json.loads(run.call_args.args[0][4]) == {"employee": ALICE, "amount": str(2**100)}

    def test_create_stream_args(self):
        with patch(SCRIPT, return_value={"success": True, "txHash": "0x3"}) as run:
            assert _ledger().create_stream(ALICE, HANDLE, "0xproof", 10, 110) == "0x3"
        assert json.loads(run.call_args.args[0][4]) == {
            "employee": ALICE,
            "encryptedSalary": HANDLE,
            "inputProof": "0xproof",
            "startBlock": 10,
            "cliffBlock": 110,
        }

    def test_duplicate_revert(self):
        with patch(SCRIPT, return_value={"success": False, "error": "execution reverted: Stream already exists"}):
            with pytest.raises(DuplicateStream):
                _ledger().create_stream(ALICE, HANDLE, "0x", 1, 1)

    def test_other_revert(self):
        with patch(SCRIPT, return_value={"success": False, "error": {"message": "AccessControl: missing role"}}):
            with pytest.raises(LedgerCallFailed, match="missing role"):
                _ledger().create_stream(ALICE, HANDLE, "0x", 1, 1)

    def test_missing_tx_hash(self):
        with patch(SCRIPT, return_value={"success": True}):
            with pytest.raises(LedgerCallFailed, match="no transaction hash"):
                _ledger().cancel_stream(ALICE)


class TestRolesAndAttestation:
    def test_grant_role_is_a_single_write(self):
        with patch(SCRIPT, return_value={"success": True, "txHash": "0x4"}) as run:
            assert _ledger().grant_role("HR_ROLE", ALICE) == "0x4"
        cmd = run.call_args.args[0]
        assert cmd[3] == "grantRole"
        assert json.loads(cmd[4]) == {"role": role_id("HR_ROLE"), "account": ALICE}
        assert run.call_args.kwargs["max_retries"] == 1

    def test_attestation_targets_oracle(self):
        oracle = "0x" + "0a" * 20
        ledger = ScriptLedger(script_cmd=["s"], rpc_url="http://rpc.test", http=MagicMock(), income_oracle_address=oracle)
        with patch(SCRIPT, return_value={"success": True, "txHash": "0x5"}) as run:
            assert ledger.request_attestation(ALICE) == "0x5"
        assert run.call_args.args[0][1] == "requestAttestation"
        assert json.loads(run.call_args.args[0][2]) == {"oracle": oracle, "employee": ALICE}
        assert run.call_args.kwargs["max_retries"] == 1

    def test_attestation_without_oracle(self):
        ledger = ScriptLedger(script_cmd=["s"], rpc_url="http://rpc.test", http=MagicMock(), income_oracle_address="")
        with patch(SCRIPT) as run:
            with pytest.raises(LedgerCallFailed, match="PAYROLL_INCOME_ORACLE_ADDRESS"):
                ledger.request_attestation(ALICE)
        run.assert_not_called()

    def test_default_admin_role_passes_through(self):
        assert role_id("0x" + "00" * 32) == "0x" + "00" * 32


class TestRoleId:
    def test_ascii_left_padded(self):
        rid = role_id("HR_ROLE")
        assert len(rid) == 66
        assert rid.endswith("HR_ROLE".encode().hex())
        assert rid[2:-14] == "0" * 50

    def test_passthrough_bytes32(self):
        raw = "0x" + "AB" * 32
        assert role_id(raw) == raw.lower()


class TestThreadedLedger:
    @pytest.mark.asyncio
    async def test_delegates_to_sync_adapter(self):
        sync = MagicMock()
        sync.submit_withdrawal.return_value = "0xfeed"
        assert await ThreadedLedger(sync).submit_withdrawal(ALICE, 7) == "0xfeed"
        sync.submit_withdrawal.assert_called_once_with(ALICE, 7)
