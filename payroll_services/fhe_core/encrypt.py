# payroll_services/fhe_core/encrypt.py
from __future__ import annotations

from dataclasses import dataclass

from payroll_services.api.logging_config import get_logger
from payroll_services.errors import EncryptionError, ExecutionEnvironmentError
from payroll_services.fhe_core.relayer import to_hex
from payroll_services.fhe_core.session import SessionManager

logger = get_logger("fhe.encrypt")


@dataclass(frozen=True)
class CiphertextPayload:
    handle: bytes
    proof: bytes

    @property
    def handle_hex(self) -> str:
        return to_hex(self.handle)

    @property
    def proof_hex(self) -> str:
        return to_hex(self.proof)


class CiphertextEncryptor:
    """Turns a plaintext u128 into a (handle, proof) pair for one contract/user."""

    def __init__(self, sessions: SessionManager):
        self._sessions = sessions

    async def encrypt(self, value: int, contract_address: str, user_address: str) -> CiphertextPayload:
        try:
            session = await self._sessions.get_session()
            buf = session.instance.create_encrypted_input(contract_address, user_address)
            buf.add128(value)
            result = await buf.encrypt()
            if not result.handles:
                raise ValueError("coprocessor returned no ciphertext handle")
            payload = CiphertextPayload(handle=result.handles[0], proof=result.input_proof)
        except (EncryptionError, ExecutionEnvironmentError):
            raise
        except Exception as e:
            logger.error("Encryption for %s failed: %s", contract_address, e)
            raise EncryptionError(f"Failed to encrypt value: {e}") from e

        logger.debug("Encrypted value for contract=%s user=%s", contract_address, user_address)
        return payload
