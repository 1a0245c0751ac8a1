# payroll_services/fhe_core/signer.py
from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional, Protocol

import httpx

from payroll_services.api.logging_config import get_logger
from payroll_services.errors import DecryptionFailed, SignatureRejected

logger = get_logger("fhe.signer")

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001
_REJECTED = re.compile(r"user (rejected|denied)|rejected by user|request rejected", re.IGNORECASE)


class WalletSigner(Protocol):
    address: str

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        ...


class RpcWalletSigner:
    """
    Signs structured data through a wallet's JSON-RPC endpoint (eth_signTypedData_v4).
    """

    def __init__(
        self,
        rpc_url: str,
        address: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url
        self.address = address
        self._timeout = timeout
        self._transport = transport
        self._next_id = 1

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        req_id = self._next_id
        self._next_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": req_id,
            "method": "eth_signTypedData_v4",
            "params": [self.address, json.dumps(typed_data)],
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(self.rpc_url, json=payload)
                r.raise_for_status()
                body = r.json()
        except httpx.HTTPError as e:
            raise DecryptionFailed(f"wallet signing request failed: {e}", e) from e
        except ValueError as e:
            raise DecryptionFailed("wallet returned a non-JSON response", e) from e

        err = body.get("error") if isinstance(body, dict) else None
        if err:
            code = err.get("code") if isinstance(err, dict) else None
            msg = err.get("message", "") if isinstance(err, dict) else str(err)
            if code == USER_REJECTED_CODE or _REJECTED.search(msg or ""):
                logger.info("Signature request rejected by %s", self.address)
                raise SignatureRejected(msg or "User rejected the request")
            raise DecryptionFailed(f"wallet signing error: {msg}")

        sig = body.get("result") if isinstance(body, dict) else None
        if not isinstance(sig, str) or not sig:
            raise DecryptionFailed("wallet returned an empty signature")
        return sig
