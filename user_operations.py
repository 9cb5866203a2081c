"""
UserOperation creation utilities for Kernel v3 smart accounts (EntryPoint v0.7)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from config import DEFAULT_GAS_LIMITS

logger = logging.getLogger(__name__)

# Function selector for execute(bytes32,bytes)
EXECUTE_SELECTOR = Web3.keccak(text="execute(bytes32,bytes)")[:4]

# ERC-7579 execution modes: call type in the first byte, exec type default
SINGLE_CALL_MODE = bytes(32)
BATCH_CALL_MODE = b"\x01" + bytes(31)

# Kernel nonce key layout: mode(1) | type(1) | validator(20) | key(2)
VALIDATOR_MODE_DEFAULT = b"\x00"
VALIDATOR_TYPE_ROOT = b"\x00"

# Placeholder signature accepted by the ECDSA validator during gas estimation
DUMMY_ECDSA_SIGNATURE = HexBytes(
    "0x" + "f" * 31 + "0" * 32 + "7" + "a" * 64 + "1c"
)


def _parse_quantity(value: Any) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid call value: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("0x"):
            return int(text, 16)
        return int(text)
    raise ValueError(f"Invalid call value: {value!r}")


@dataclass(frozen=True)
class Call:
    """A single contract invocation executed by the smart account"""
    to: str
    data: str
    value: int = 0

    def __post_init__(self):
        if not isinstance(self.to, str) or not Web3.is_address(self.to.lower()):
            raise ValueError(f"Invalid call target: {self.to!r}")
        if not isinstance(self.data, str) or not self.data.startswith("0x"):
            raise ValueError(f"Call data must be a 0x-prefixed hex string: {self.data!r}")
        if self.value < 0:
            raise ValueError("Call value must not be negative")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Call":
        if not isinstance(payload, dict):
            raise ValueError("Each call must be an object with 'to' and 'data'")
        return cls(
            to=payload.get("to"),
            data=payload.get("data") or "0x",
            value=_parse_quantity(payload.get("value")),
        )

    @property
    def data_bytes(self) -> bytes:
        return bytes(HexBytes(self.data))


def parse_calls(raw_calls: Any) -> List[Call]:
    """Parse the JSON ``calls`` array of an orchestration request"""
    if not isinstance(raw_calls, list) or not raw_calls:
        raise ValueError("'calls' must be a non-empty list")
    return [Call.from_dict(item) for item in raw_calls]


@dataclass
class UserOperation:
    """Unpacked EntryPoint v0.7 UserOperation"""
    sender: str
    nonce: int
    call_data: bytes
    factory: Optional[str] = None
    factory_data: bytes = b""
    call_gas_limit: int = DEFAULT_GAS_LIMITS["call"]
    verification_gas_limit: int = DEFAULT_GAS_LIMITS["verification"]
    pre_verification_gas: int = DEFAULT_GAS_LIMITS["pre_verification"]
    max_fee_per_gas: int = DEFAULT_GAS_LIMITS["fee"]
    max_priority_fee_per_gas: int = DEFAULT_GAS_LIMITS["fee"]
    paymaster: Optional[str] = None
    paymaster_verification_gas_limit: int = 0
    paymaster_post_op_gas_limit: int = 0
    paymaster_data: bytes = b""


@dataclass
class SignedUserOperation:
    """Wrapper holding a UserOperation and its signature"""
    user_operation: UserOperation
    signature: bytes


def encode_kernel_calls(calls: Sequence[Call]) -> bytes:
    """Encode calls as Kernel v3 execute(bytes32 mode, bytes executionCalldata)

    A single call uses the packed ``target | value | data`` layout, more than
    one call uses the ABI encoded ``(address,uint256,bytes)[]`` batch layout.
    """
    if not calls:
        raise ValueError("At least one call is required")

    if len(calls) == 1:
        call = calls[0]
        mode = SINGLE_CALL_MODE
        execution = (
            bytes(HexBytes(Web3.to_checksum_address(call.to)))
            + call.value.to_bytes(32, "big")
            + call.data_bytes
        )
    else:
        mode = BATCH_CALL_MODE
        execution = encode(
            ["(address,uint256,bytes)[]"],
            [[(Web3.to_checksum_address(c.to), c.value, c.data_bytes) for c in calls]],
        )

    logger.debug(f"Encoded {len(calls)} call(s) for Kernel execute")
    return bytes(EXECUTE_SELECTOR) + encode(["bytes32", "bytes"], [mode, execution])


def kernel_nonce_key(validator_address: str, key: int = 0) -> int:
    """EntryPoint nonce key selecting the root validator of a Kernel v3 account"""
    encoded = (
        VALIDATOR_MODE_DEFAULT
        + VALIDATOR_TYPE_ROOT
        + bytes(HexBytes(Web3.to_checksum_address(validator_address)))
        + key.to_bytes(2, "big")
    )
    return int.from_bytes(encoded, "big")


def _pack_uints(high: int, low: int) -> bytes:
    return ((high << 128) | low).to_bytes(32, "big")


def pack_init_code(user_op: UserOperation) -> bytes:
    if not user_op.factory:
        return b""
    return bytes(HexBytes(user_op.factory)) + user_op.factory_data


def pack_paymaster_and_data(user_op: UserOperation) -> bytes:
    if not user_op.paymaster:
        return b""
    return (
        bytes(HexBytes(user_op.paymaster))
        + user_op.paymaster_verification_gas_limit.to_bytes(16, "big")
        + user_op.paymaster_post_op_gas_limit.to_bytes(16, "big")
        + user_op.paymaster_data
    )


def pack_user_operation(user_op: UserOperation) -> bytes:
    """ABI encoding of a UserOperation as hashed by EntryPoint v0.7, without its signature"""
    return encode(
        ["address", "uint256", "bytes32", "bytes32", "bytes32", "uint256", "bytes32", "bytes32"],
        [
            Web3.to_checksum_address(user_op.sender),
            user_op.nonce,
            Web3.keccak(pack_init_code(user_op)),
            Web3.keccak(user_op.call_data),
            _pack_uints(user_op.verification_gas_limit, user_op.call_gas_limit),
            user_op.pre_verification_gas,
            _pack_uints(user_op.max_priority_fee_per_gas, user_op.max_fee_per_gas),
            Web3.keccak(pack_paymaster_and_data(user_op)),
        ],
    )


def get_user_operation_hash(user_op: UserOperation, entry_point: str, chain_id: int) -> bytes:
    """Compute the EntryPoint v0.7 hash of a UserOperation"""
    return bytes(Web3.keccak(
        encode(
            ["bytes32", "address", "uint256"],
            [Web3.keccak(pack_user_operation(user_op)), Web3.to_checksum_address(entry_point), chain_id],
        )
    ))


def create_user_operation(
    smart_account: str,
    calls: Sequence[Call],
    nonce: int,
    pre_verification_gas: int,
    factory: Optional[str] = None,
    factory_data: Optional[bytes] = None,
) -> UserOperation:
    """Create an unsigned UserOperation executing ``calls`` from the smart account"""
    call_data = encode_kernel_calls(calls)

    logger.info(f"Created UserOperation for {smart_account} with {len(calls)} call(s), nonce {nonce}")

    return UserOperation(
        sender=smart_account,
        nonce=nonce,
        call_data=call_data,
        factory=factory,
        factory_data=factory_data or b"",
        pre_verification_gas=pre_verification_gas,
    )
