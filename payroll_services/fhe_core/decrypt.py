"""
Authenticated user decryption.

Each attempt uses a fresh ephemeral keypair and a fresh wallet signature.
Only ACL propagation failures (the ledger's permission grant not yet seen by
the coprocessor) are retried, on a fixed delay.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from payroll_services import config as cfg
from payroll_services.api.logging_config import get_logger
from payroll_services.errors import (
    DecryptionExhausted,
    DecryptionFailed,
    ExecutionEnvironmentError,
    InvalidSignature,
    NoValueReturned,
    PayrollError,
)
from payroll_services.fhe_core.eip712 import DecryptionRequest
from payroll_services.fhe_core.relayer import (
    CoprocessorError,
    CoprocessorErrorKind,
    RelayerInstance,
    normalize_handle,
)
from payroll_services.fhe_core.session import SessionManager
from payroll_services.fhe_core.signer import WalletSigner

logger = get_logger("fhe.decrypt")

Sleep = Callable[[float], Awaitable[None]]


class DecryptionClient:
    def __init__(
        self,
        sessions: SessionManager,
        signer: WalletSigner,
        max_attempts: int = cfg.DECRYPT_MAX_ATTEMPTS,
        retry_delay: float = cfg.DECRYPT_RETRY_DELAY_SEC,
        duration_days: int = cfg.DECRYPT_DURATION_DAYS,
        clock: Callable[[], float] = time.time,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._sessions = sessions
        self._signer = signer
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.duration_days = duration_days
        self._clock = clock
        self._sleep = sleep

    async def decrypt(self, handle, contract_address: str, user_address: Optional[str] = None) -> int:
        """
        Decrypt one ciphertext handle the user has been granted access to.

        Args:
            handle: ciphertext handle (hex string or raw bytes)
            contract_address: contract that holds the handle
            user_address: requesting identity (defaults to the signer's address)

        Returns:
            The plaintext as an int.

        Raises:
            SignatureRejected: the wallet owner declined to sign
            DecryptionExhausted: ACL grant still not visible after every attempt
            InvalidSignature: coprocessor rejected the signature
            NoValueReturned: response did not include the handle
            DecryptionFailed: anything else, with the cause attached
        """
        user = user_address or self._signer.address
        key = normalize_handle(handle)
        try:
            session = await self._sessions.get_session()
        except ExecutionEnvironmentError:
            raise
        except PayrollError as e:
            raise DecryptionFailed(f"coprocessor session unavailable: {e}", e) from e

        last_error: Optional[CoprocessorError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self._attempt(session.instance, key, contract_address, user)
            except CoprocessorError as e:
                if e.kind is CoprocessorErrorKind.ACL_PENDING:
                    last_error = e
                    if attempt < self.max_attempts:
                        logger.warning(
                            "Decryption not yet authorized (attempt %d/%d), retrying in %.1fs",
                            attempt, self.max_attempts, self.retry_delay,
                        )
                        await self._sleep(self.retry_delay)
                    continue
                if e.kind is CoprocessorErrorKind.SIGNATURE_INVALID:
                    raise InvalidSignature(str(e)) from e
                logger.error("Decryption failed (%s): %s", e.kind.value, e)
                raise DecryptionFailed(str(e), e) from e

        logger.error("Decryption still unauthorized after %d attempts", self.max_attempts)
        raise DecryptionExhausted(self.max_attempts, last_error) from last_error

    async def _attempt(self, instance: RelayerInstance, key: str, contract_address: str, user: str) -> int:
        request = await self._authorize(instance, contract_address, user)
        try:
            results = await instance.user_decrypt(
                [{"handle": key, "contractAddress": contract_address}],
                request.private_key,
                request.public_key,
                request.signature or "",
                request.contract_addresses,
                request.user_address,
                request.issued_at,
                request.duration_days,
            )
        except (CoprocessorError, PayrollError):
            raise
        except Exception as e:
            raise DecryptionFailed(f"user decryption call failed: {e}", e) from e

        normalized = {normalize_handle(h): v for h, v in (results or {}).items()}
        if key not in normalized:
            raise NoValueReturned(f"no value returned for handle {key}")
        return int(normalized[key])

    async def _authorize(self, instance: RelayerInstance, contract_address: str, user: str) -> DecryptionRequest:
        keypair = instance.generate_keypair()
        issued_at = int(self._clock())
        contracts = [contract_address]
        typed_data = instance.create_eip712(keypair.public_key, contracts, issued_at, self.duration_days)
        request = DecryptionRequest(
            public_key=keypair.public_key,
            private_key=keypair.private_key,
            issued_at=issued_at,
            duration_days=self.duration_days,
            contract_addresses=contracts,
            user_address=user,
            typed_data=typed_data,
        )
        request.signature = await self._signer.sign_typed_data(typed_data)
        return request


__all__ = ["DecryptionClient"]
