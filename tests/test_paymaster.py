"""
Tests for paymaster sponsorship.
"""
import pytest

from config import CHAIN_ID_SEPOLIA, ENTRYPOINT_V07
from paymaster import PaymasterClient, PaymasterError, apply_sponsorship
from user_operations import SignedUserOperation, UserOperation

from conftest import ACCOUNT_ADDRESS, TEST_RPC_URL

PAYMASTER = "0x2222222222222222222222222222222222222222"

SPONSORSHIP = {
    "paymaster": PAYMASTER,
    "paymasterData": "0xcafe",
    "paymasterVerificationGasLimit": "0x8000",
    "paymasterPostOpGasLimit": "0x1",
    "callGasLimit": "0x5000",
    "verificationGasLimit": "0x6000",
    "preVerificationGas": "0x11170",
    "maxFeePerGas": "0x20",
    "maxPriorityFeePerGas": "0x10",
}


def user_op():
    return UserOperation(sender=ACCOUNT_ADDRESS, nonce=0, call_data=b"\x01", pre_verification_gas=70000)


def test_sponsor_user_operation(requests_mock):
    requests_mock.post(TEST_RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": SPONSORSHIP})
    client = PaymasterClient(TEST_RPC_URL, ENTRYPOINT_V07, CHAIN_ID_SEPOLIA)

    result = client.sponsor_user_operation(SignedUserOperation(user_op(), b"\x01" * 65))

    assert result == SPONSORSHIP
    body = requests_mock.last_request.json()
    assert body["method"] == "zd_sponsorUserOperation"
    request = body["params"][0]
    assert request["chainId"] == CHAIN_ID_SEPOLIA
    assert request["entryPointAddress"] == ENTRYPOINT_V07
    assert request["userOp"]["sender"] == ACCOUNT_ADDRESS


def test_sponsor_rejected(requests_mock):
    requests_mock.post(TEST_RPC_URL, json={
        "jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "policy not found"}
    })
    client = PaymasterClient(TEST_RPC_URL, ENTRYPOINT_V07, CHAIN_ID_SEPOLIA)

    with pytest.raises(PaymasterError, match="policy not found"):
        client.sponsor_user_operation(SignedUserOperation(user_op(), b""))


def test_sponsor_without_paymaster_is_invalid(requests_mock):
    requests_mock.post(TEST_RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": {"callGasLimit": "0x1"}})
    client = PaymasterClient(TEST_RPC_URL, ENTRYPOINT_V07, CHAIN_ID_SEPOLIA)

    with pytest.raises(PaymasterError, match="invalid sponsorship"):
        client.sponsor_user_operation(SignedUserOperation(user_op(), b""))


def test_apply_sponsorship():
    op = apply_sponsorship(user_op(), SPONSORSHIP)

    assert op.paymaster == PAYMASTER
    assert op.paymaster_data == b"\xca\xfe"
    assert op.paymaster_verification_gas_limit == 0x8000
    assert op.paymaster_post_op_gas_limit == 1
    assert op.call_gas_limit == 0x5000
    assert op.verification_gas_limit == 0x6000
    assert op.pre_verification_gas == 0x11170
    assert op.max_fee_per_gas == 0x20
    assert op.max_priority_fee_per_gas == 0x10


def test_apply_sponsorship_keeps_unreturned_gas_values():
    op = apply_sponsorship(user_op(), {"paymaster": PAYMASTER, "paymasterData": "0x"})

    assert op.pre_verification_gas == 70000
    assert op.paymaster_data == b""
