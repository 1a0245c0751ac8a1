import pytest

from conftest import ALICE, BOB, CONTRACT, HANDLE, HR
from payroll_clients.cli import payroll_cli as cli
from payroll_services.fhe_core.decrypt import DecryptionClient
from payroll_services.fhe_core.encrypt import CiphertextEncryptor
from payroll_services.fhe_core.relayer import normalize_handle
from payroll_services.payroll.streams import StreamState


async def _no_sleep(_delay):
    return None


@pytest.fixture
def client(ledger, sessions, signer, monkeypatch):
    monkeypatch.setattr(cli.cfg, "PAYROLL_CONTRACT_ADDRESS", CONTRACT)
    return cli.PayrollClient(
        address=HR,
        ledger=ledger,
        sessions=sessions,
        encryptor=CiphertextEncryptor(sessions),
        decryptor=DecryptionClient(sessions, signer, sleep=_no_sleep),
    )


class TestCliFlows:
    """Flows run against in-memory fakes."""

    def test_template_to_stdout(self, capsys):
        assert cli.main(["template"]) == 0
        assert capsys.readouterr().out.startswith("address,salaryPerBlock,startBlock,cliffBlocks")

    def test_fmt_eth(self):
        assert cli._fmt_eth(10**15) == "0.001 ETH"
        assert cli._fmt_eth(2 * 10**18) == "2 ETH"

    @pytest.mark.asyncio
    async def test_bulk_dry_run_never_writes(self, client, ledger, tmp_path):
        path = tmp_path / "employees.csv"
        path.write_text(f"address,salaryPerBlock,startBlock,cliffBlocks\n{ALICE},0.001,auto,10\n0xbad,1,auto,1\n")

        assert await cli.flow_bulk(client, path, dry_run=True) == 1
        assert "create_stream" not in ledger.names()

    @pytest.mark.asyncio
    async def test_bulk_requires_hr_role(self, client, tmp_path):
        path = tmp_path / "employees.csv"
        path.write_text(f"address,salaryPerBlock,startBlock,cliffBlocks\n{ALICE},0.001,auto,10\n")

        with pytest.raises(SystemExit) as exc_info:
            await cli.flow_bulk(client, path, dry_run=False)
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_bulk_creates_streams(self, client, ledger, tmp_path, capsys):
        ledger.roles["HR_ROLE"] = {HR.lower()}
        path = tmp_path / "employees.csv"
        path.write_text(f"address,salaryPerBlock,startBlock,cliffBlocks\n{ALICE},0.001,auto,10\n{BOB},0.002,50,0\n")

        assert await cli.flow_bulk(client, path, dry_run=False) == 0
        assert set(ledger.streams) == {ALICE.lower(), BOB.lower()}
        assert "[002/002]" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_admin_pause(self, client, ledger, capsys):
        ledger.roles["HR_ROLE"] = {HR.lower()}
        ledger.streams[ALICE.lower()] = StreamState(ALICE, 1, 0, 0, 0)
        await cli.flow_admin(client, "pause", ALICE)
        assert "Stream paused" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_withdraw_prints_phases(self, client, ledger, instance, capsys):
        ledger.block = 1150
        ledger.streams[HR.lower()] = StreamState(HR, 10**12, 1000, 1100, 0)
        instance.plaintexts[normalize_handle(HANDLE)] = 150_000_000_000_000

        await cli.flow_withdraw(client)

        out = capsys.readouterr().out
        assert "Requesting" in out and "Decrypting" in out and "Submitting" in out
        assert "0.00015 ETH" in out
        assert ledger.calls[-1] == ("submit_withdrawal", (HR, 150_000_000_000_000))

    @pytest.mark.asyncio
    async def test_attest_requests_for_own_wallet(self, client, ledger, capsys):
        await cli.flow_attest(client)
        assert ledger.calls == [("request_attestation", (HR,))]
        assert "Income attestation requested" in capsys.readouterr().out


class TestGrantHr:
    """Admin grants HR_ROLE."""

    @pytest.mark.asyncio
    async def test_admin_grants_role(self, client, ledger, capsys):
        ledger.roles[cli.cfg.DEFAULT_ADMIN_ROLE] = {HR.lower()}
        await cli.flow_grant_hr(client, ALICE)
        assert ("grant_role", ("HR_ROLE", ALICE)) in ledger.calls
        assert ALICE.lower() in ledger.roles["HR_ROLE"]
        assert "HR_ROLE granted" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_non_admin_is_refused(self, client, ledger):
        with pytest.raises(SystemExit) as exc_info:
            await cli.flow_grant_hr(client, ALICE)
        assert exc_info.value.code == 1
        assert "grant_role" not in ledger.names()

    @pytest.mark.asyncio
    async def test_existing_holder_not_granted_again(self, client, ledger, capsys):
        ledger.roles[cli.cfg.DEFAULT_ADMIN_ROLE] = {HR.lower()}
        ledger.roles["HR_ROLE"] = {ALICE.lower()}
        await cli.flow_grant_hr(client, ALICE)
        assert "grant_role" not in ledger.names()
        assert "already holds" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_bad_address(self, client, ledger):
        with pytest.raises(SystemExit) as exc_info:
            await cli.flow_grant_hr(client, "0x123")
        assert exc_info.value.code == 2
        assert ledger.calls == []

    def test_parser_accepts_new_commands(self):
        args = cli._parser().parse_args(["grant-hr", ALICE])
        assert (args.cmd, args.account) == ("grant-hr", ALICE)
        assert cli._parser().parse_args(["attest"]).cmd == "attest"
