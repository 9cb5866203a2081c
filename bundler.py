"""
ERC-4337 bundler integration and format conversion utilities for Kernel smart accounts
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Union

import requests

from user_operations import SignedUserOperation, UserOperation

logger = logging.getLogger(__name__)


class BundlerError(RuntimeError):
    """Raised when the bundler rejects a request or cannot be reached"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


def _hex_bytes(value: bytes) -> str:
    return "0x" + value.hex() if isinstance(value, bytes) else value


def convert_user_operation_to_rpc_format(
    user_op: Union[UserOperation, SignedUserOperation],
    signature: bytes = None
) -> Dict:
    """Convert a UserOperation to the bundler JSON-RPC format (EntryPoint v0.7)"""
    # Handle SignedUserOperation wrapper
    if isinstance(user_op, SignedUserOperation):
        op = user_op.user_operation
        signature = user_op.signature
    else:
        op = user_op

    rpc_dict = {
        "sender": op.sender,
        "nonce": hex(op.nonce),
        "callData": _hex_bytes(op.call_data),
        "callGasLimit": hex(op.call_gas_limit),
        "verificationGasLimit": hex(op.verification_gas_limit),
        "preVerificationGas": hex(op.pre_verification_gas),
        "maxFeePerGas": hex(op.max_fee_per_gas),
        "maxPriorityFeePerGas": hex(op.max_priority_fee_per_gas),
        "signature": _hex_bytes(bytes(signature)) if signature else "0x",
    }

    # Factory fields only while the account is undeployed
    if op.factory:
        rpc_dict.update({
            "factory": op.factory,
            "factoryData": _hex_bytes(op.factory_data) if op.factory_data else "0x",
        })

    if op.paymaster:
        rpc_dict.update({
            "paymaster": op.paymaster,
            "paymasterVerificationGasLimit": hex(op.paymaster_verification_gas_limit),
            "paymasterPostOpGasLimit": hex(op.paymaster_post_op_gas_limit),
            "paymasterData": _hex_bytes(op.paymaster_data) if op.paymaster_data else "0x",
        })

    return rpc_dict


class BundlerClient:
    """Client for interacting with ERC-4337 bundlers (ZeroDev)"""

    def __init__(
        self,
        bundler_url: str,
        entry_point_address: str,
        receipt_timeout: float = 120.0,
        receipt_poll_interval: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        self.bundler_url = bundler_url
        self.entry_point_address = entry_point_address
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self.session = session or requests.Session()

    def get_user_operation_gas_price(self) -> Dict:
        """Get current gas prices from the ZeroDev bundler"""
        return self._make_bundler_request("zd_getUserOperationGasPrice", [])

    def send_user_operation(self, signed_user_op: SignedUserOperation) -> str:
        """Send a SignedUserOperation to the bundler and return its hash"""
        logger.info("Sending UserOperation to bundler...")

        user_op_dict = convert_user_operation_to_rpc_format(signed_user_op)
        logger.debug(f"Full UserOp to bundler: {user_op_dict}")
        result = self._make_bundler_request(
            "eth_sendUserOperation", [user_op_dict, self.entry_point_address]
        )

        if not isinstance(result, str):
            raise BundlerError("Bundler returned an invalid userOp hash")
        logger.info(f"UserOperation sent successfully: {result}")
        return result

    def get_user_operation_receipt(self, user_op_hash: str) -> Optional[Dict]:
        """Return the receipt for a UserOperation, or None while it is pending"""
        result = self._make_bundler_request("eth_getUserOperationReceipt", [user_op_hash])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise BundlerError("Bundler returned an invalid receipt payload")
        return result

    async def wait_for_receipt(self, user_op_hash: str) -> Dict:
        """Poll the bundler until the UserOperation is included on chain"""
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = self.get_user_operation_receipt(user_op_hash)
            if receipt is not None:
                tx_hash = (receipt.get("receipt") or {}).get("transactionHash")
                if receipt.get("success") is False:
                    logger.warning(f"UserOperation {user_op_hash} reverted in transaction {tx_hash}")
                else:
                    logger.info(f"UserOperation {user_op_hash} included in transaction {tx_hash}")
                return receipt
            if time.monotonic() >= deadline:
                raise BundlerError(
                    f"Timed out after {self.receipt_timeout:g}s waiting for UserOperation receipt {user_op_hash}"
                )
            await asyncio.sleep(self.receipt_poll_interval)

    def _make_bundler_request(self, method: str, params: List) -> Any:
        """Make JSON-RPC request to bundler"""
        return json_rpc_request(self.session, self.bundler_url, method, params, BundlerError)


def json_rpc_request(session: requests.Session, url: str, method: str, params: List, error_cls) -> Any:
    """POST a JSON-RPC 2.0 request and return its result, raising ``error_cls`` on failure"""
    payload = {
        "jsonrpc": "2.0",
        "method": method,
        "params": params,
        "id": 1
    }

    try:
        response = session.post(
            url,
            json=payload,
            headers={'Content-Type': 'application/json'},
            timeout=30
        )
    except requests.RequestException as e:
        logger.error(f"{method} request failed: {e}")
        raise error_cls(f"{method} request failed: {e}") from e

    if response.status_code != 200:
        logger.error(f"{method} HTTP error: {response.status_code}")
        raise error_cls(f"{method} HTTP error: {response.status_code}", code=response.status_code)

    try:
        result = response.json()
    except ValueError as e:
        raise error_cls(f"{method} returned invalid JSON") from e
    if not isinstance(result, dict):
        raise error_cls(f"{method} returned an invalid JSON-RPC payload")

    if result.get('error'):
        error = result['error']
        message = error.get('message', 'Unknown error') if isinstance(error, dict) else str(error)
        logger.error(f"{method} error: {message}")
        raise error_cls(message, code=error.get('code') if isinstance(error, dict) else None)

    return result.get('result')
