"""
Configuration for sponsored smart account swaps
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

# Network constants
CHAIN_ID_SEPOLIA = 11155111
ENTRYPOINT_V07 = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"

# Kernel v3.1 deployment (same address on every chain)
KERNEL_V3_1_FACTORY = "0xaac5D4240AF87249B3f71BC8E4A2cae074A3E419"
KERNEL_META_FACTORY = "0xd703aaE79538628d27099B8c4f621bE4CCd142d5"
ECDSA_VALIDATOR = "0x845ADb2C711129d4f3966735eD98a9F09fC4cE57"

# Deployed test contracts on Sepolia
MOCK_SWAP_ADDRESS = "0x718421BB9a6Bb63D4A63295d59c12196c3e221Ed"


@dataclass(frozen=True)
class Token:
    symbol: str
    address: str


TOKENS: Dict[str, Token] = {
    "USDC": Token(symbol="USDC", address="0x6c6Dc940F2E6a27921df887AD96AE586abD8EfD8"),
    "PEPE": Token(symbol="PEPE", address="0x2eC77FDcb56370A3C0aDa518DDe86D820d76743B"),
}

# MockSwap sells token A for token B via swapAToB, and the reverse via swapBToA
TOKEN_A = "USDC"

# Default gas parameters for UserOperations
DEFAULT_GAS_LIMITS = {
    "call": 300000,
    "verification": 1000000,
    "pre_verification": 70000,
    "fee": 1100000
}

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or invalid"""


def _parse_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ConfigurationError(f"Invalid integer for {name}: {raw}")


def _parse_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid number for {name}: {raw}")


def _parse_bool_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_token(symbol: str) -> Token:
    """Look up one of the fixed deployment tokens by symbol"""
    token = TOKENS.get(symbol.upper())
    if token is None:
        raise ConfigurationError(f"Unknown token {symbol}; expected one of {', '.join(TOKENS)}")
    return token


@dataclass
class OrchestrationSettings:
    """Timing and compensation knobs for the approve-then-swap sequence"""

    settle_delay: float = 30.0
    allowance_check_attempts: int = 1
    allowance_check_interval: float = 2.0
    revoke_on_swap_failure: bool = False

    @classmethod
    def from_env(cls) -> "OrchestrationSettings":
        attempts = _parse_int_env('ALLOWANCE_CHECK_ATTEMPTS', 1)
        if attempts < 1:
            raise ConfigurationError("ALLOWANCE_CHECK_ATTEMPTS must be at least 1")
        return cls(
            settle_delay=_parse_float_env('SETTLE_DELAY_SECONDS', 30.0),
            allowance_check_attempts=attempts,
            allowance_check_interval=_parse_float_env('ALLOWANCE_CHECK_INTERVAL_SECONDS', 2.0),
            revoke_on_swap_failure=_parse_bool_env('REVOKE_ON_SWAP_FAILURE'),
        )


class SmartAccountConfig:
    """Configuration for the smart account orchestration endpoint

    Raises ``ConfigurationError`` before any network access when the signing
    key or the ZeroDev RPC endpoint is absent.
    """

    def __init__(self):
        self.private_key = os.environ.get('PRIVATE_KEY')
        self.rpc_url = os.environ.get('ZERODEV_RPC')
        if not self.private_key or not self.rpc_url:
            raise ConfigurationError("Missing env vars")

        # Network configuration
        self.chain_id = CHAIN_ID_SEPOLIA
        self.entry_point_address = ENTRYPOINT_V07
        self.kernel_factory_address = KERNEL_V3_1_FACTORY
        self.kernel_meta_factory_address = KERNEL_META_FACTORY
        self.validator_address = ECDSA_VALIDATOR

        # ZeroDev serves the bundler and paymaster from the project RPC
        self.bundler_url = self.rpc_url
        self.paymaster_url = os.environ.get('PAYMASTER_RPC_URL') or self.rpc_url

        # Gas and timing
        self.pre_verification_gas = _parse_int_env('PRE_VERIFICATION_GAS', DEFAULT_GAS_LIMITS["pre_verification"])
        self.receipt_timeout = _parse_float_env('RECEIPT_TIMEOUT_SECONDS', 120.0)
        self.receipt_poll_interval = _parse_float_env('RECEIPT_POLL_INTERVAL_SECONDS', 2.0)

        self.settings = OrchestrationSettings.from_env()


class SwapClientConfig:
    """Configuration for the command line swap client"""

    def __init__(self, endpoint_url: Optional[str] = None, rpc_url: Optional[str] = None):
        self.endpoint_url = endpoint_url or os.environ.get(
            'SWAP_API_URL', 'http://localhost:8080/api/smartaccount'
        )
        self.rpc_url = rpc_url or os.environ.get('SEPOLIA_RPC_URL', 'https://sepolia.drpc.org')
        self.swap_address = MOCK_SWAP_ADDRESS

        # Allowance polling budget
        self.poll_attempts = _parse_int_env('ALLOWANCE_POLL_ATTEMPTS', 20)
        self.poll_interval = _parse_float_env('ALLOWANCE_POLL_INTERVAL_SECONDS', 2.0)
        self.poll_backoff = _parse_float_env('ALLOWANCE_POLL_BACKOFF', 1.0)
        if self.poll_attempts < 1:
            raise ConfigurationError("ALLOWANCE_POLL_ATTEMPTS must be at least 1")

        self.revoke_on_failure = _parse_bool_env('REVOKE_ON_FAILURE')
        self.journal_path = os.environ.get('SWAP_JOURNAL_PATH') or None
        self.request_timeout = 300
