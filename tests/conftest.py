"""
Pytest fixtures for the smart account swap tests.
"""
import asyncio

import pytest

from web3 import Web3

from config import MOCK_SWAP_ADDRESS, TOKENS, OrchestrationSettings
from contracts import APPROVE_SELECTOR

TEST_PRIV_KEY = "0x" + "4c" * 32
TEST_RPC_URL = "https://rpc.zerodev.example/api/v2/bundler/test"
ACCOUNT_ADDRESS = "0x1111111111111111111111111111111111111111"
TOKEN_A = TOKENS["USDC"].address
TOKEN_B = TOKENS["PEPE"].address
SWAP_ADDRESS = MOCK_SWAP_ADDRESS

ENV_VARS = [
    "PRIVATE_KEY", "ZERODEV_RPC", "PAYMASTER_RPC_URL", "SETTLE_DELAY_SECONDS",
    "ALLOWANCE_CHECK_ATTEMPTS", "ALLOWANCE_CHECK_INTERVAL_SECONDS", "PRE_VERIFICATION_GAS",
    "RECEIPT_TIMEOUT_SECONDS", "RECEIPT_POLL_INTERVAL_SECONDS", "REVOKE_ON_SWAP_FAILURE",
    "SWAP_API_URL", "SEPOLIA_RPC_URL", "ALLOWANCE_POLL_ATTEMPTS", "ALLOWANCE_POLL_INTERVAL_SECONDS",
    "ALLOWANCE_POLL_BACKOFF", "REVOKE_ON_FAILURE", "SWAP_JOURNAL_PATH",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Start every test from an environment without any of our variables"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def configured_env(monkeypatch):
    monkeypatch.setenv("PRIVATE_KEY", TEST_PRIV_KEY)
    monkeypatch.setenv("ZERODEV_RPC", TEST_RPC_URL)
    monkeypatch.setenv("SETTLE_DELAY_SECONDS", "0")


@pytest.fixture
def sleeps(monkeypatch):
    """Make asyncio.sleep instantaneous and record the requested delays"""
    recorded = []

    async def _sleep(delay, *args, **kwargs):
        recorded.append(delay)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    return recorded


@pytest.fixture
def settings():
    return OrchestrationSettings(settle_delay=30.0, allowance_check_attempts=1, allowance_check_interval=2.0)


class FakeContext:
    """Stand-in smart account context recording every submission"""

    def __init__(self, allowances=(100,), fail_submissions=(), receipt_error=None, address=ACCOUNT_ADDRESS):
        self.address = address
        self.allowances = list(allowances)
        self.fail_submissions = set(fail_submissions)
        self.receipt_error = receipt_error
        self.submissions = []
        self.receipts_awaited = []
        self.allowance_reads = []

    async def send_user_operation(self, calls):
        index = len(self.submissions)
        self.submissions.append(list(calls))
        if index in self.fail_submissions:
            raise RuntimeError("bundler rejected user operation")
        return "0x" + format(index + 1, "064x")

    async def wait_for_user_operation_receipt(self, user_op_hash):
        self.receipts_awaited.append(user_op_hash)
        if self.receipt_error:
            raise self.receipt_error
        return {"userOpHash": user_op_hash, "success": True}

    async def read_allowance(self, token, owner, spender):
        self.allowance_reads.append((token, owner, spender))
        if len(self.allowances) > 1:
            return self.allowances.pop(0)
        return self.allowances[0]


@pytest.fixture
def fake_context():
    return FakeContext()


def op_hash(index):
    """Hash FakeContext returns for its ``index``-th submission (1-based)"""
    return "0x" + format(index, "064x")


def decode_approve(data):
    """Return (spender, amount) from ERC-20 approve calldata"""
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if raw[:4] != bytes(APPROVE_SELECTOR):
        raise ValueError("Calldata is not an ERC-20 approve call")
    spender = Web3.to_checksum_address(raw[4 + 12:4 + 32])
    amount = int.from_bytes(raw[4 + 32:4 + 64], "big")
    return spender, amount
