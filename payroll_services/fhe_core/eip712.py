# payroll_services/fhe_core/eip712.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from payroll_services.config import NetworkConfig

PRIMARY_TYPE = "UserDecryptRequestVerification"
SECONDS_PER_DAY = 86_400

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

USER_DECRYPT_FIELDS = [
    {"name": "publicKey", "type": "bytes"},
    {"name": "contractAddresses", "type": "address[]"},
    {"name": "startTimestamp", "type": "uint256"},
    {"name": "durationDays", "type": "uint256"},
    {"name": "extraData", "type": "bytes"},
]


def build_user_decrypt_typed_data(
    public_key: str,
    contract_addresses: Sequence[str],
    start_timestamp: int,
    duration_days: int,
    config: NetworkConfig,
) -> Dict[str, Any]:
    """
    Typed data the wallet signs to authorize one user-decryption request.

    Binds the ephemeral public key, the contract set and the validity window
    [start_timestamp, start_timestamp + duration_days).
    """
    if duration_days <= 0:
        raise ValueError("duration_days must be positive")
    if not contract_addresses:
        raise ValueError("at least one contract address is required")
    pk = public_key if public_key.startswith("0x") else "0x" + public_key
    return {
        "domain": {
            "name": "Decryption",
            "version": "1",
            "chainId": config.gateway_chain_id,
            "verifyingContract": config.decryption_verifier_address,
        },
        "types": {
            "EIP712Domain": list(EIP712_DOMAIN_FIELDS),
            PRIMARY_TYPE: list(USER_DECRYPT_FIELDS),
        },
        "primaryType": PRIMARY_TYPE,
        "message": {
            "publicKey": pk,
            "contractAddresses": list(contract_addresses),
            "startTimestamp": str(int(start_timestamp)),
            "durationDays": str(int(duration_days)),
            "extraData": "0x00",
        },
    }


@dataclass
class DecryptionRequest:
    """One signed decryption authorization. Never reused across attempts."""

    public_key: str
    private_key: str = field(repr=False)
    issued_at: int
    duration_days: int
    contract_addresses: List[str]
    user_address: str
    typed_data: Dict[str, Any] = field(repr=False)
    signature: Optional[str] = field(default=None, repr=False)

    @property
    def expires_at(self) -> int:
        return self.issued_at + self.duration_days * SECONDS_PER_DAY

    def is_valid_at(self, ts: int) -> bool:
        return self.issued_at <= ts < self.expires_at

    @property
    def signed(self) -> bool:
        return bool(self.signature)
