"""
ZeroDev paymaster sponsorship for Kernel UserOperations
"""

import logging
from typing import Dict, Optional

import requests

from bundler import convert_user_operation_to_rpc_format, json_rpc_request
from user_operations import SignedUserOperation, UserOperation

logger = logging.getLogger(__name__)


class PaymasterError(RuntimeError):
    """Raised when the paymaster declines to sponsor a UserOperation"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


def _quantity(value) -> int:
    return int(value, 16) if isinstance(value, str) else int(value)


def _data(value) -> bytes:
    if not value or value == "0x":
        return b""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


class PaymasterClient:
    """Client for the ZeroDev verifying paymaster"""

    def __init__(
        self,
        paymaster_url: str,
        entry_point_address: str,
        chain_id: int,
        session: Optional[requests.Session] = None,
    ):
        self.paymaster_url = paymaster_url
        self.entry_point_address = entry_point_address
        self.chain_id = chain_id
        self.session = session or requests.Session()

    def sponsor_user_operation(self, signed_user_op: SignedUserOperation) -> Dict:
        """Request sponsorship; the result carries paymaster fields and gas limits"""
        request = {
            "chainId": self.chain_id,
            "userOp": convert_user_operation_to_rpc_format(signed_user_op),
            "entryPointAddress": self.entry_point_address,
            "shouldOverrideFee": False,
            "shouldConsume": True,
        }
        result = json_rpc_request(
            self.session, self.paymaster_url, "zd_sponsorUserOperation", [request], PaymasterError
        )
        if not isinstance(result, dict) or not result.get("paymaster"):
            raise PaymasterError("Paymaster returned an invalid sponsorship payload")

        logger.info(f"UserOperation sponsored by paymaster {result['paymaster']}")
        return result


def apply_sponsorship(user_operation: UserOperation, sponsorship: Dict) -> UserOperation:
    """Copy the paymaster fields and gas limits from a sponsorship onto the UserOperation"""
    user_operation.paymaster = sponsorship["paymaster"]
    user_operation.paymaster_data = _data(sponsorship.get("paymasterData"))
    user_operation.paymaster_verification_gas_limit = _quantity(
        sponsorship.get("paymasterVerificationGasLimit", 0)
    )
    user_operation.paymaster_post_op_gas_limit = _quantity(sponsorship.get("paymasterPostOpGasLimit", 0))

    # The paymaster signs over the gas values it returns
    gas_fields = {
        "callGasLimit": "call_gas_limit",
        "verificationGasLimit": "verification_gas_limit",
        "preVerificationGas": "pre_verification_gas",
        "maxFeePerGas": "max_fee_per_gas",
        "maxPriorityFeePerGas": "max_priority_fee_per_gas",
    }
    for rpc_name, attribute in gas_fields.items():
        if sponsorship.get(rpc_name) is not None:
            setattr(user_operation, attribute, _quantity(sponsorship[rpc_name]))

    return user_operation
