# payroll_services/config.py
from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field

# ===== Network identity (coprocessor / gateway) =====
CHAIN_ID: int = int(os.getenv("PAYROLL_CHAIN_ID", "11155111"))
GATEWAY_CHAIN_ID: int = int(os.getenv("PAYROLL_GATEWAY_CHAIN_ID", "11155111"))
RELAYER_URL: str = os.getenv("PAYROLL_RELAYER_URL", "https://relayer.testnet.zama.org/")

# Official Sepolia coprocessor deployment; override per network.
ACL_CONTRACT_ADDRESS: str = os.getenv(
    "PAYROLL_ACL_CONTRACT_ADDRESS", "0xf0Ffdc93b7E186bC2f8CB3dAA75D86d1930A433D"
)
COPROCESSOR_CONTRACT_ADDRESS: str = os.getenv(
    "PAYROLL_COPROCESSOR_CONTRACT_ADDRESS", "0x92C920834Ec8941d2C77D188936E1f7A6f49c127"
)
KMS_VERIFIER_CONTRACT_ADDRESS: str = os.getenv(
    "PAYROLL_KMS_VERIFIER_CONTRACT_ADDRESS", "0xbE0E383937d564D7FF0BC3b46c51f0bF8d5C311A"
)
INPUT_VERIFIER_CONTRACT_ADDRESS: str = os.getenv(
    "PAYROLL_INPUT_VERIFIER_CONTRACT_ADDRESS", "0x6Dea47D57Bf64fCa01E97CB1b7a00EDeC44e51fB"
)
DECRYPTION_VERIFIER_ADDRESS: str = os.getenv(
    "PAYROLL_DECRYPTION_VERIFIER_ADDRESS", "0x9479d48FF4e1E422927Afdded85EdBBCC4Ed1ff4"
)
RELAYER_TIMEOUT_SEC: float = float(os.getenv("PAYROLL_RELAYER_TIMEOUT", "30"))

# ===== Ledger =====
RPC_URL: str = os.getenv("PAYROLL_RPC_URL", "http://127.0.0.1:8545")
PAYROLL_CONTRACT_ADDRESS: str = os.getenv("PAYROLL_CONTRACT_ADDRESS", "")
LEDGER_SCRIPT: str = os.getenv("PAYROLL_LEDGER_SCRIPT", "npx tsx scripts/payroll.ts")
LEDGER_CWD: Path = Path(os.getenv("PAYROLL_LEDGER_CWD", ".")).expanduser()
SCRIPT_TIMEOUT_SEC: int = int(os.getenv("PAYROLL_SCRIPT_TIMEOUT", "120"))

# ===== Wallet =====
WALLET_RPC_URL: str = os.getenv("PAYROLL_WALLET_RPC_URL", "http://127.0.0.1:1248")
WALLET_ADDRESS: str = os.getenv("PAYROLL_WALLET_ADDRESS", "")

# "client" (interactive CLI) or "server" (API process)
EXECUTION_CONTEXT: str = os.getenv("PAYROLL_EXECUTION_CONTEXT", "client")

LOG_LEVEL: str = os.getenv("PAYROLL_LOG_LEVEL", "INFO")

# ===== Policy =====
DECRYPT_MAX_ATTEMPTS: int = 5
DECRYPT_RETRY_DELAY_SEC: float = 3.0
DECRYPT_DURATION_DAYS: int = 10

AUTO_START_OFFSET_BLOCKS: int = 10
BLOCK_TIME_SECONDS: int = 12
DEFAULT_CLIFF_BLOCKS: int = 100

WEI_PER_ETH: int = 10**18
U128_MAX: int = 2**128 - 1

HR_ROLE: str = "HR_ROLE"
DEFAULT_ADMIN_ROLE: str = "0x" + "00" * 32

# IncomeOracle contract that issues income attestations from encrypted salary data
INCOME_ORACLE_ADDRESS: str = os.getenv("PAYROLL_INCOME_ORACLE_ADDRESS", "")


class NetworkConfig(BaseModel):
    """Chain identity and coprocessor contract set a session is bound to."""

    chain_id: int = Field(CHAIN_ID, description="Host chain id.")
    gateway_chain_id: int = Field(GATEWAY_CHAIN_ID, description="Chain id used in the decryption EIP-712 domain.")
    relayer_url: str = Field(RELAYER_URL, description="Base URL of the relayer / coprocessor gateway.")
    acl_contract_address: str = ACL_CONTRACT_ADDRESS
    coprocessor_contract_address: str = COPROCESSOR_CONTRACT_ADDRESS
    kms_verifier_contract_address: str = KMS_VERIFIER_CONTRACT_ADDRESS
    input_verifier_contract_address: str = INPUT_VERIFIER_CONTRACT_ADDRESS
    decryption_verifier_address: str = DECRYPTION_VERIFIER_ADDRESS
    timeout_sec: float = RELAYER_TIMEOUT_SEC

    model_config = {"frozen": True}

    @classmethod
    def from_env(cls) -> "NetworkConfig":
        env = os.environ
        return cls(
            chain_id=int(env.get("PAYROLL_CHAIN_ID", CHAIN_ID)),
            gateway_chain_id=int(env.get("PAYROLL_GATEWAY_CHAIN_ID", GATEWAY_CHAIN_ID)),
            relayer_url=env.get("PAYROLL_RELAYER_URL", RELAYER_URL),
            acl_contract_address=env.get("PAYROLL_ACL_CONTRACT_ADDRESS", ACL_CONTRACT_ADDRESS),
            coprocessor_contract_address=env.get(
                "PAYROLL_COPROCESSOR_CONTRACT_ADDRESS", COPROCESSOR_CONTRACT_ADDRESS
            ),
            kms_verifier_contract_address=env.get(
                "PAYROLL_KMS_VERIFIER_CONTRACT_ADDRESS", KMS_VERIFIER_CONTRACT_ADDRESS
            ),
            input_verifier_contract_address=env.get(
                "PAYROLL_INPUT_VERIFIER_CONTRACT_ADDRESS", INPUT_VERIFIER_CONTRACT_ADDRESS
            ),
            decryption_verifier_address=env.get(
                "PAYROLL_DECRYPTION_VERIFIER_ADDRESS", DECRYPTION_VERIFIER_ADDRESS
            ),
            timeout_sec=float(env.get("PAYROLL_RELAYER_TIMEOUT", RELAYER_TIMEOUT_SEC)),
        )

    def base_url(self) -> str:
        return self.relayer_url.rstrip("/")


def ledger_script_cmd() -> List[str]:
    return shlex.split(LEDGER_SCRIPT)


__all__ = [
    "CHAIN_ID",
    "GATEWAY_CHAIN_ID",
    "RELAYER_URL",
    "RPC_URL",
    "PAYROLL_CONTRACT_ADDRESS",
    "LEDGER_SCRIPT",
    "LEDGER_CWD",
    "SCRIPT_TIMEOUT_SEC",
    "WALLET_RPC_URL",
    "WALLET_ADDRESS",
    "EXECUTION_CONTEXT",
    "LOG_LEVEL",
    "DECRYPT_MAX_ATTEMPTS",
    "DECRYPT_RETRY_DELAY_SEC",
    "DECRYPT_DURATION_DAYS",
    "AUTO_START_OFFSET_BLOCKS",
    "BLOCK_TIME_SECONDS",
    "DEFAULT_CLIFF_BLOCKS",
    "WEI_PER_ETH",
    "U128_MAX",
    "HR_ROLE",
    "DEFAULT_ADMIN_ROLE",
    "INCOME_ORACLE_ADDRESS",
    "NetworkConfig",
    "ledger_script_cmd",
]
