"""
ECDSA validator signatures for Kernel UserOperations
"""

import logging

from eth_account import Account
from eth_account.messages import encode_defunct

from user_operations import (
    DUMMY_ECDSA_SIGNATURE,
    SignedUserOperation,
    UserOperation,
    get_user_operation_hash,
)

logger = logging.getLogger(__name__)


class EcdsaSignatureService:
    """Signs UserOperations for the Kernel root ECDSA validator with a local key"""

    def __init__(self, private_key: str, entry_point_address: str, chain_id: int):
        self._account = Account.from_key(private_key)
        self.entry_point_address = entry_point_address
        self.chain_id = chain_id

    @property
    def owner_address(self) -> str:
        """Address of the EOA that owns the smart account"""
        return self._account.address

    def sign_user_operation(self, user_operation: UserOperation) -> SignedUserOperation:
        """Sign the EntryPoint v0.7 hash as an EIP-191 personal message"""
        user_op_hash = get_user_operation_hash(user_operation, self.entry_point_address, self.chain_id)
        signed = self._account.sign_message(encode_defunct(primitive=user_op_hash))
        logger.info(f"Signed UserOperation 0x{user_op_hash.hex()} for {user_operation.sender}")

        return SignedUserOperation(
            user_operation=user_operation,
            signature=bytes(signed.signature)
        )

    @staticmethod
    def dummy_sign(user_operation: UserOperation) -> SignedUserOperation:
        """Attach the placeholder signature used for gas pricing and sponsorship"""
        return SignedUserOperation(
            user_operation=user_operation,
            signature=bytes(DUMMY_ECDSA_SIGNATURE)
        )
