import pytest

from conftest import ALICE, CONTRACT
from payroll_services.errors import EncryptionError, ExecutionEnvironmentError
from payroll_services.fhe_core.encrypt import CiphertextEncryptor, CiphertextPayload
from payroll_services.fhe_core.session import SessionManager
from payroll_services.config import NetworkConfig


class TestCiphertextEncryptor:
    """Plaintext u128 -> (handle, proof)."""

    @pytest.mark.asyncio
    async def test_encrypt_returns_handle_and_proof(self, sessions, instance):
        """The value is added as one 128-bit field scoped to the contract/user pair."""
        enc = CiphertextEncryptor(sessions)

        payload = await enc.encrypt(1_000_000_000_000, CONTRACT, ALICE)

        assert isinstance(payload, CiphertextPayload)
        assert payload.handle == b"\x01" * 32
        assert payload.proof == b"\x01proof"
        assert payload.handle_hex == "0x" + "01" * 32
        assert instance.encrypted == [(CONTRACT, ALICE, [1_000_000_000_000])]

    @pytest.mark.asyncio
    async def test_out_of_range_value_is_wrapped(self, sessions):
        """Values outside the u128 range surface as EncryptionError."""
        enc = CiphertextEncryptor(sessions)

        with pytest.raises(EncryptionError) as exc_info:
            await enc.encrypt(2**128, CONTRACT, ALICE)
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_coprocessor_failure_is_wrapped(self, sessions, instance):
        """A failing input-proof call never yields a partial payload."""
        instance.encrypt_error = RuntimeError("relayer 500")
        enc = CiphertextEncryptor(sessions)

        with pytest.raises(EncryptionError, match="relayer 500"):
            await enc.encrypt(5, CONTRACT, ALICE)

    @pytest.mark.asyncio
    async def test_session_failure_is_wrapped(self, instance):
        """Initialization failures are reported as EncryptionError."""
        from conftest import RuntimeFactory

        mgr = SessionManager(NetworkConfig(), runtime_loader=RuntimeFactory(instance, failures=1), context="client")
        with pytest.raises(EncryptionError):
            await CiphertextEncryptor(mgr).encrypt(5, CONTRACT, ALICE)

    @pytest.mark.asyncio
    async def test_wrong_context_propagates(self, runtime_factory):
        """The execution-context refusal is not hidden behind EncryptionError."""
        mgr = SessionManager(NetworkConfig(), runtime_loader=runtime_factory, context="server")
        with pytest.raises(ExecutionEnvironmentError):
            await CiphertextEncryptor(mgr).encrypt(5, CONTRACT, ALICE)
