"""
Coprocessor (relayer) client.

HTTP surface consumed by the session manager, the encryptor and the
decryption client:

- GET  /v1/keyurl        network public key used to seal encrypted inputs
- POST /v1/input-proof   sealed 128-bit fields -> ciphertext handles + input proof
- POST /v1/user-decrypt  signed request -> plaintexts sealed to an ephemeral key

Failures are classified once, here, into CoprocessorErrorKind so callers can
branch on a typed kind instead of on message text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import httpx
from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from payroll_services.api.logging_config import get_logger
from payroll_services.config import U128_MAX, NetworkConfig
from payroll_services.errors import PayrollError
from payroll_services.fhe_core import eip712

logger = get_logger("fhe.relayer")

U128_BYTES = 16


# ===== Errors =====
class CoprocessorErrorKind(str, Enum):
    ACL_PENDING = "acl_pending"
    SIGNATURE_INVALID = "signature_invalid"
    TRANSPORT = "transport"
    BAD_REQUEST = "bad_request"
    UNKNOWN = "unknown"


class CoprocessorError(PayrollError):
    def __init__(self, kind: CoprocessorErrorKind, message: str, status: Optional[int] = None):
        self.kind = kind
        self.status = status
        super().__init__(message)


_ACL_PATTERN = re.compile(r"not[ _]authorized|not[ _]allowed|permission denied|\bacl\b")
_SIGNATURE_PATTERN = re.compile(r"signature|eip-?712")


def _error_text(body: Any) -> str:
    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict):
            body = inner
        elif isinstance(inner, str):
            return inner
        parts = [str(body.get(k, "")) for k in ("label", "message", "details")]
        return " ".join(p for p in parts if p)
    return str(body or "")


def classify_failure(status: Optional[int], body: Any) -> CoprocessorErrorKind:
    # message text wins over the bare status code
    text = _error_text(body).lower()
    if _ACL_PATTERN.search(text):
        return CoprocessorErrorKind.ACL_PENDING
    if _SIGNATURE_PATTERN.search(text):
        return CoprocessorErrorKind.SIGNATURE_INVALID
    if status == 403:
        return CoprocessorErrorKind.ACL_PENDING
    if status == 401:
        return CoprocessorErrorKind.SIGNATURE_INVALID
    if status is None or status == 429 or status >= 500:
        return CoprocessorErrorKind.TRANSPORT
    if 400 <= status < 500:
        return CoprocessorErrorKind.BAD_REQUEST
    return CoprocessorErrorKind.UNKNOWN


# ===== Hex helpers =====
def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    v = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(v)


def normalize_handle(handle: Any) -> str:
    if isinstance(handle, (bytes, bytearray)):
        return to_hex(bytes(handle))
    h = str(handle).lower()
    return h if h.startswith("0x") else "0x" + h


# ===== Value types =====
@dataclass(frozen=True)
class Keypair:
    public_key: str
    private_key: str

    def __repr__(self) -> str:
        return f"Keypair(public_key={self.public_key!r}, private_key=<redacted>)"


@dataclass(frozen=True)
class EncryptedInput:
    handles: List[bytes]
    input_proof: bytes


class EncryptedInputBuffer:
    """Accumulates plaintext fields scoped to one (contract, user) pair."""

    def __init__(self, instance: "RelayerInstance", contract_address: str, user_address: str):
        self._instance = instance
        self.contract_address = contract_address
        self.user_address = user_address
        self._fields: List[int] = []

    def add128(self, value: int) -> "EncryptedInputBuffer":
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"add128 expects an int, got {type(value).__name__}")
        if value < 0 or value > U128_MAX:
            raise ValueError(f"value out of range for a 128-bit unsigned field: {value}")
        self._fields.append(value)
        return self

    def __len__(self) -> int:
        return len(self._fields)

    async def encrypt(self) -> EncryptedInput:
        if not self._fields:
            raise ValueError("encrypted input buffer is empty")
        packed = b"".join(v.to_bytes(U128_BYTES, "big") for v in self._fields)
        return await self._instance.submit_input(
            self.contract_address, self.user_address, packed, len(self._fields)
        )


class RelayerInstance:
    """Ready coprocessor client bound to one network identity."""

    def __init__(self, config: NetworkConfig, client: httpx.AsyncClient, network_key: bytes, key_id: str):
        self.config = config
        self.key_id = key_id
        self._client = client
        self._sealer = SealedBox(PublicKey(network_key))

    # ----- requests -----
    async def _post(self, path: str, payload: Dict[str, Any]) -> Any:
        try:
            r = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            raise CoprocessorError(CoprocessorErrorKind.TRANSPORT, f"relayer unreachable: {e}") from e
        body = _json_or_text(r)
        if r.status_code >= 400:
            kind = classify_failure(r.status_code, body)
            raise CoprocessorError(kind, f"relayer {path} failed ({r.status_code}): {_error_text(body)}", r.status_code)
        if isinstance(body, dict) and "response" in body:
            return body["response"]
        return body

    # ----- encryption -----
    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInputBuffer:
        return EncryptedInputBuffer(self, contract_address, user_address)

    async def submit_input(self, contract_address: str, user_address: str, packed: bytes, n_fields: int) -> EncryptedInput:
        sealed = self._sealer.encrypt(packed)
        res = await self._post(
            "/v1/input-proof",
            {
                "contractAddress": contract_address,
                "userAddress": user_address,
                "ciphertextWithInputVerification": sealed.hex(),
                "contractChainId": hex(self.config.chain_id),
                "keyId": self.key_id,
                "extraData": "0x00",
            },
        )
        try:
            handles = [from_hex(h) for h in res["handles"]]
            proof = from_hex(res["inputProof"])
        except (KeyError, TypeError, ValueError) as e:
            raise CoprocessorError(CoprocessorErrorKind.UNKNOWN, f"malformed input-proof response: {e}") from e
        if len(handles) != n_fields:
            raise CoprocessorError(
                CoprocessorErrorKind.UNKNOWN,
                f"input-proof returned {len(handles)} handles for {n_fields} fields",
            )
        return EncryptedInput(handles=handles, input_proof=proof)

    # ----- decryption -----
    def generate_keypair(self) -> Keypair:
        sk = PrivateKey.generate()
        return Keypair(public_key=bytes(sk.public_key).hex(), private_key=bytes(sk).hex())

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> Dict[str, Any]:
        return eip712.build_user_decrypt_typed_data(
            public_key, contract_addresses, start_timestamp, duration_days, self.config
        )

    async def user_decrypt(
        self,
        handle_contract_pairs: Sequence[Dict[str, str]],
        private_key: str,
        public_key: str,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: int,
        duration_days: int,
    ) -> Dict[str, int]:
        res = await self._post(
            "/v1/user-decrypt",
            {
                "handleContractPairs": [
                    {"handle": normalize_handle(p["handle"]), "contractAddress": p["contractAddress"]}
                    for p in handle_contract_pairs
                ],
                "requestValidity": {
                    "startTimestamp": str(start_timestamp),
                    "durationDays": str(duration_days),
                },
                "contractsChainId": str(self.config.chain_id),
                "contractAddresses": list(contract_addresses),
                "userAddress": user_address,
                "signature": signature[2:] if signature.startswith("0x") else signature,
                "publicKey": public_key,
                "extraData": "0x00",
            },
        )
        opener = SealedBox(PrivateKey(bytes.fromhex(private_key)))
        out: Dict[str, int] = {}
        for entry in res or []:
            try:
                clear = opener.decrypt(from_hex(entry["payload"]))
            except (KeyError, TypeError, ValueError, CryptoError) as e:
                raise CoprocessorError(
                    CoprocessorErrorKind.UNKNOWN, f"could not open decryption share: {e}"
                ) from e
            out[normalize_handle(entry["handle"])] = int.from_bytes(clear, "big")
        return out

    async def aclose(self) -> None:
        await self._client.aclose()


class RelayerRuntime:
    """
    Loaded-but-not-bootstrapped coprocessor runtime.

    bootstrap() fetches the network key once; create_instance() binds the
    result to the configured chain id and contract set.
    """

    def __init__(self, config: NetworkConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url(), timeout=config.timeout_sec, transport=transport
        )
        self._network_key: Optional[bytes] = None
        self._key_id: str = ""

    @property
    def bootstrapped(self) -> bool:
        return self._network_key is not None

    async def bootstrap(self) -> None:
        if self._network_key is not None:
            return
        try:
            r = await self._client.get("/v1/keyurl")
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CoprocessorError(
                classify_failure(e.response.status_code, _json_or_text(e.response)),
                f"relayer key fetch failed ({e.response.status_code})",
                e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise CoprocessorError(CoprocessorErrorKind.TRANSPORT, f"relayer unreachable: {e}") from e

        body = _json_or_text(r)
        info = body.get("response", body) if isinstance(body, dict) else {}
        key = info.get("publicKey") if isinstance(info, dict) else None
        try:
            self._network_key = from_hex(key["data"])
            self._key_id = str(key.get("id", ""))
        except (KeyError, TypeError, ValueError) as e:
            raise CoprocessorError(CoprocessorErrorKind.UNKNOWN, f"malformed key response: {e}") from e
        if len(self._network_key) != 32:
            self._network_key = None
            raise CoprocessorError(CoprocessorErrorKind.UNKNOWN, "network public key must be 32 bytes")
        logger.info("Relayer bootstrapped (key id=%s)", self._key_id or "-")

    async def create_instance(self) -> RelayerInstance:
        if self._network_key is None:
            raise CoprocessorError(CoprocessorErrorKind.UNKNOWN, "runtime used before bootstrap")
        return RelayerInstance(self.config, self._client, self._network_key, self._key_id)

    async def aclose(self) -> None:
        await self._client.aclose()


async def load_relayer_runtime(
    config: NetworkConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> RelayerRuntime:
    return RelayerRuntime(config, transport=transport)


def _json_or_text(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


__all__ = [
    "CoprocessorErrorKind",
    "CoprocessorError",
    "classify_failure",
    "to_hex",
    "from_hex",
    "normalize_handle",
    "Keypair",
    "EncryptedInput",
    "EncryptedInputBuffer",
    "RelayerInstance",
    "RelayerRuntime",
    "load_relayer_runtime",
]
