import json

import httpx
import pytest

from conftest import ALICE
from payroll_services.errors import DecryptionFailed, SignatureRejected
from payroll_services.fhe_core.signer import RpcWalletSigner

TYPED = {"primaryType": "UserDecryptRequestVerification", "message": {"durationDays": "10"}}


def _signer(handler):
    return RpcWalletSigner("http://wallet.test", ALICE, transport=httpx.MockTransport(handler))


class TestRpcWalletSigner:
    """eth_signTypedData_v4 over JSON-RPC."""

    @pytest.mark.asyncio
    async def test_returns_signature(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xsig"})

        assert await _signer(handler).sign_typed_data(TYPED) == "0xsig"
        assert seen[0]["method"] == "eth_signTypedData_v4"
        assert seen[0]["params"][0] == ALICE
        assert json.loads(seen[0]["params"][1]) == TYPED

    @pytest.mark.asyncio
    async def test_user_rejection_code(self):
        """EIP-1193 code 4001 means the user declined."""
        handler = lambda r: httpx.Response(200, json={"error": {"code": 4001, "message": "nope"}})
        with pytest.raises(SignatureRejected):
            await _signer(handler).sign_typed_data(TYPED)

    @pytest.mark.asyncio
    async def test_user_rejection_message(self):
        handler = lambda r: httpx.Response(200, json={"error": {"code": -32000, "message": "User denied message signature"}})
        with pytest.raises(SignatureRejected):
            await _signer(handler).sign_typed_data(TYPED)

    @pytest.mark.asyncio
    async def test_other_rpc_error(self):
        handler = lambda r: httpx.Response(200, json={"error": {"code": -32603, "message": "internal"}})
        with pytest.raises(DecryptionFailed, match="internal"):
            await _signer(handler).sign_typed_data(TYPED)

    @pytest.mark.asyncio
    async def test_http_failure(self):
        handler = lambda r: httpx.Response(502, text="bad gateway")
        with pytest.raises(DecryptionFailed):
            await _signer(handler).sign_typed_data(TYPED)

    @pytest.mark.asyncio
    async def test_empty_result(self):
        handler = lambda r: httpx.Response(200, json={"result": ""})
        with pytest.raises(DecryptionFailed, match="empty signature"):
            await _signer(handler).sign_typed_data(TYPED)
