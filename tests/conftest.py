"""
Shared fakes for the payroll tests: coprocessor runtime/instance, wallet
signer and an in-memory ledger.
"""
import asyncio
from typing import Dict, List, Optional

import pytest

from payroll_services.config import NetworkConfig
from payroll_services.fhe_core.eip712 import build_user_decrypt_typed_data
from payroll_services.fhe_core.relayer import (
    CoprocessorError,
    CoprocessorErrorKind,
    EncryptedInput,
    Keypair,
    normalize_handle,
)
from payroll_services.fhe_core.session import SessionManager
from payroll_services.payroll.ledger import LedgerReceipt
from payroll_services.payroll.streams import CiphertextHandle, StreamState, WithdrawalEvent

CONTRACT = "0x" + "c0" * 20
HR = "0x" + "a1" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
HANDLE = "0x" + "ab" * 32


class FakeBuffer:
    def __init__(self, instance, contract, user):
        self.instance = instance
        self.contract = contract
        self.user = user
        self.values: List[int] = []

    def add128(self, value):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0 or value >= 2**128:
            raise ValueError(f"bad u128: {value!r}")
        self.values.append(value)
        return self

    async def encrypt(self):
        if self.instance.encrypt_error is not None:
            raise self.instance.encrypt_error
        self.instance.encrypted.append((self.contract, self.user, list(self.values)))
        n = len(self.instance.encrypted)
        return EncryptedInput(handles=[bytes([n]) * 32], input_proof=b"\x01proof")


class FakeInstance:
    """Stands in for RelayerInstance. decrypt_outcomes is consumed one item per call."""

    def __init__(self, config: Optional[NetworkConfig] = None):
        self.config = config or NetworkConfig()
        self.keypairs: List[Keypair] = []
        self.decrypt_calls: List[dict] = []
        self.decrypt_outcomes: List[object] = []
        self.plaintexts: Dict[str, int] = {}
        self.encrypted: List[tuple] = []
        self.encrypt_error: Optional[BaseException] = None

    def create_encrypted_input(self, contract, user):
        return FakeBuffer(self, contract, user)

    def generate_keypair(self) -> Keypair:
        n = len(self.keypairs)
        kp = Keypair(public_key=f"{n:064x}", private_key=f"{n + 1000:064x}")
        self.keypairs.append(kp)
        return kp

    def create_eip712(self, public_key, contracts, start, days):
        return build_user_decrypt_typed_data(public_key, contracts, start, days, self.config)

    async def user_decrypt(self, pairs, private_key, public_key, signature, contracts, user, start, days):
        self.decrypt_calls.append(
            {"pairs": pairs, "public_key": public_key, "signature": signature, "user": user, "start": start}
        )
        if self.decrypt_outcomes:
            outcome = self.decrypt_outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return {normalize_handle(p["handle"]): self.plaintexts[normalize_handle(p["handle"])]
                for p in pairs if normalize_handle(p["handle"]) in self.plaintexts}


class FakeRuntime:
    def __init__(self, instance: FakeInstance, fail_bootstrap: Optional[BaseException] = None, delay: float = 0):
        self.instance = instance
        self.fail_bootstrap = fail_bootstrap
        self.delay = delay
        self.bootstrap_calls = 0
        self.closed = False

    async def bootstrap(self):
        self.bootstrap_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_bootstrap is not None:
            raise self.fail_bootstrap

    async def create_instance(self):
        return self.instance

    async def aclose(self):
        self.closed = True


class RuntimeFactory:
    """runtime_loader for SessionManager that records every runtime it hands out."""

    def __init__(self, instance: FakeInstance, failures: int = 0, delay: float = 0):
        self.instance = instance
        self.failures = failures
        self.delay = delay
        self.runtimes: List[FakeRuntime] = []

    async def __call__(self, config):
        fail = RuntimeError("bootstrap exploded") if len(self.runtimes) < self.failures else None
        rt = FakeRuntime(self.instance, fail_bootstrap=fail, delay=self.delay)
        self.runtimes.append(rt)
        return rt

    @property
    def bootstrap_calls(self) -> int:
        return sum(r.bootstrap_calls for r in self.runtimes)


class FakeSigner:
    def __init__(self, address: str = ALICE, error: Optional[BaseException] = None):
        self.address = address
        self.error = error
        self.signed: List[dict] = []

    async def sign_typed_data(self, typed_data):
        if self.error is not None:
            raise self.error
        self.signed.append(typed_data)
        return "0x" + f"{len(self.signed):02x}" * 65


class FakeLedger:
    """In-memory PayrollLedger; `calls` records (method, args) in order."""

    def __init__(self, block: int = 1000):
        self.block = block
        self.streams: Dict[str, StreamState] = {}
        self.events: Dict[str, List[WithdrawalEvent]] = {}
        self.roles: Dict[str, set] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, BaseException] = {}
        # create_stream failures keyed by lowercased employee
        self.fail_create: Dict[str, BaseException] = {}
        self.receipt_logs: Optional[list] = None
        self.claimable_handle = HANDLE
        self._tx = 0

    def _next_tx(self) -> str:
        self._tx += 1
        return "0x" + f"{self._tx:064x}"

    def _enter(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    async def read_stream(self, employee):
        self._enter("read_stream", employee)
        return self.streams.get(employee.lower(), StreamState.missing(employee))

    async def request_claimable_amount(self, employee):
        self._enter("request_claimable_amount", employee)
        logs = self.receipt_logs
        if logs is None:
            logs = [{"eventName": "WithdrawalReady", "args": {"employee": employee, "claimableHandle": self.claimable_handle}}]
        return LedgerReceipt(tx_hash=self._next_tx(), logs=logs)

    async def submit_withdrawal(self, employee, amount):
        self._enter("submit_withdrawal", employee, amount)
        return self._next_tx()

    async def create_stream(self, employee, handle, proof, start_block, cliff_block):
        self._enter("create_stream", employee, handle, proof, start_block, cliff_block)
        if employee.lower() in self.fail_create:
            raise self.fail_create[employee.lower()]
        self.streams[employee.lower()] = StreamState(
            employee, CiphertextHandle(handle), start_block, cliff_block, CiphertextHandle("0x" + "00" * 32)
        )
        return self._next_tx()

    async def current_block_number(self):
        self._enter("current_block_number")
        return self.block

    async def pause_stream(self, employee):
        self._enter("pause_stream", employee)
        return self._next_tx()

    async def resume_stream(self, employee):
        self._enter("resume_stream", employee)
        return self._next_tx()

    async def cancel_stream(self, employee):
        self._enter("cancel_stream", employee)
        return self._next_tx()

    async def list_employees(self):
        self._enter("list_employees")
        return [s.employee for s in self.streams.values()]

    async def withdrawal_history(self, employee):
        self._enter("withdrawal_history", employee)
        return list(self.events.get(employee.lower(), []))

    async def has_role(self, role, account):
        self._enter("has_role", role, account)
        return account.lower() in self.roles.get(role, set())

    async def grant_role(self, role, account):
        self._enter("grant_role", role, account)
        self.roles.setdefault(role, set()).add(account.lower())
        return self._next_tx()

    async def request_attestation(self, employee):
        self._enter("request_attestation", employee)
        return self._next_tx()

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]


def acl_error() -> CoprocessorError:
    return CoprocessorError(CoprocessorErrorKind.ACL_PENDING, "not authorized to user decrypt handle", 403)


@pytest.fixture
def instance():
    return FakeInstance()


@pytest.fixture
def runtime_factory(instance):
    return RuntimeFactory(instance)


@pytest.fixture
def sessions(runtime_factory):
    return SessionManager(NetworkConfig(), runtime_loader=runtime_factory, context="client")


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def ledger():
    return FakeLedger()
