"""
Kernel v3.1 smart account context: address derivation, UserOperation building and submission
"""

import logging
from typing import Dict, Optional, Sequence

from eth_abi import encode
from hexbytes import HexBytes
from web3 import Web3

from bundler import BundlerClient
from config import SmartAccountConfig
from contracts import read_allowance
from paymaster import PaymasterClient, apply_sponsorship
from signer import EcdsaSignatureService
from user_operations import Call, UserOperation, create_user_operation, kernel_nonce_key

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_SALT = bytes(32)

# Kernel.initialize(bytes21 rootValidator, address hook, bytes validatorData, bytes hookData, bytes[] initConfig)
INITIALIZE_SELECTOR = Web3.keccak(text="initialize(bytes21,address,bytes,bytes,bytes[])")[:4]
# FactoryStaker.deployWithFactory(address factory, bytes createData, bytes32 salt)
DEPLOY_WITH_FACTORY_SELECTOR = Web3.keccak(text="deployWithFactory(address,bytes,bytes32)")[:4]

VALIDATION_TYPE_VALIDATOR = b"\x01"

KERNEL_FACTORY_ABI = [{
    "inputs": [{"name": "data", "type": "bytes"}, {"name": "salt", "type": "bytes32"}],
    "name": "getAddress",
    "outputs": [{"name": "", "type": "address"}],
    "stateMutability": "view",
    "type": "function"
}]

GET_NONCE_ABI = [{
    "inputs": [{"name": "sender", "type": "address"}, {"name": "key", "type": "uint192"}],
    "name": "getNonce",
    "outputs": [{"name": "", "type": "uint256"}],
    "stateMutability": "view",
    "type": "function"
}]


class SmartAccountContext:
    """Capability object for one Kernel smart account bound to entry point, chain and signer.

    Built fresh for every request from ``SmartAccountConfig``; holds no state
    beyond the lazily derived account address.
    """

    def __init__(
        self,
        config: SmartAccountConfig,
        web3: Optional[Web3] = None,
        bundler_client: Optional[BundlerClient] = None,
        paymaster_client: Optional[PaymasterClient] = None,
        signer: Optional[EcdsaSignatureService] = None,
    ):
        self.config = config
        self.web3 = web3 or Web3(Web3.HTTPProvider(config.rpc_url))
        self.bundler_client = bundler_client or BundlerClient(
            config.bundler_url,
            config.entry_point_address,
            receipt_timeout=config.receipt_timeout,
            receipt_poll_interval=config.receipt_poll_interval,
        )
        self.paymaster_client = paymaster_client or PaymasterClient(
            config.paymaster_url, config.entry_point_address, config.chain_id
        )
        self.signer = signer or EcdsaSignatureService(
            config.private_key, config.entry_point_address, config.chain_id
        )
        self._address: Optional[str] = None

    @property
    def address(self) -> str:
        """Counterfactual Kernel account address for the signer"""
        if self._address is None:
            factory = self.web3.eth.contract(
                address=Web3.to_checksum_address(self.config.kernel_factory_address),
                abi=KERNEL_FACTORY_ABI,
            )
            address = factory.functions.getAddress(self._initialization_data(), ZERO_SALT).call()
            self._address = Web3.to_checksum_address(address)
            logger.info(f"Smart account {self._address} for owner {self.signer.owner_address}")
        return self._address

    async def send_user_operation(self, calls: Sequence[Call]) -> str:
        """Build, sponsor, sign and submit one UserOperation executing ``calls``"""
        sender = self.address
        factory, factory_data = self._factory_fields(sender)

        user_operation = create_user_operation(
            smart_account=sender,
            calls=calls,
            nonce=self._get_nonce(sender),
            pre_verification_gas=self.config.pre_verification_gas,
            factory=factory,
            factory_data=factory_data,
        )
        user_operation = self._apply_gas_prices(user_operation)

        sponsorship = self.paymaster_client.sponsor_user_operation(self.signer.dummy_sign(user_operation))
        user_operation = apply_sponsorship(user_operation, sponsorship)

        signed_user_operation = self.signer.sign_user_operation(user_operation)
        return self.bundler_client.send_user_operation(signed_user_operation)

    async def wait_for_user_operation_receipt(self, user_op_hash: str) -> Dict:
        """Block until the bundler reports the UserOperation as included"""
        return await self.bundler_client.wait_for_receipt(user_op_hash)

    async def read_allowance(self, token: str, owner: str, spender: str) -> int:
        return read_allowance(self.web3, token, owner, spender)

    def _initialization_data(self) -> bytes:
        root_validator = VALIDATION_TYPE_VALIDATOR + bytes(HexBytes(self.config.validator_address))
        owner = bytes(HexBytes(self.signer.owner_address))
        return bytes(INITIALIZE_SELECTOR) + encode(
            ["bytes21", "address", "bytes", "bytes", "bytes[]"],
            [root_validator, ZERO_ADDRESS, owner, b"", []],
        )

    def _factory_fields(self, sender: str):
        """Factory and factory data while the account has no code on chain"""
        if len(self.web3.eth.get_code(sender)) > 0:
            return None, None

        logger.info(f"Smart account {sender} not deployed yet, including factory data")
        factory_data = bytes(DEPLOY_WITH_FACTORY_SELECTOR) + encode(
            ["address", "bytes", "bytes32"],
            [
                Web3.to_checksum_address(self.config.kernel_factory_address),
                self._initialization_data(),
                ZERO_SALT,
            ],
        )
        return self.config.kernel_meta_factory_address, factory_data

    def _apply_gas_prices(self, user_operation: UserOperation) -> UserOperation:
        """Update UserOperation fees with the bundler's current gas prices"""
        gas_prices = self.bundler_client.get_user_operation_gas_price()
        if gas_prices and 'standard' in gas_prices:
            standard_prices = gas_prices['standard']
            if 'maxFeePerGas' in standard_prices:
                user_operation.max_fee_per_gas = int(standard_prices['maxFeePerGas'], 16)
            if 'maxPriorityFeePerGas' in standard_prices:
                user_operation.max_priority_fee_per_gas = int(standard_prices['maxPriorityFeePerGas'], 16)
        return user_operation

    def _get_nonce(self, sender: str) -> int:
        """Get current nonce for the root validator key from the EntryPoint"""
        entry_point_contract = self.web3.eth.contract(
            address=self.web3.to_checksum_address(self.config.entry_point_address),
            abi=GET_NONCE_ABI
        )

        nonce = entry_point_contract.functions.getNonce(
            self.web3.to_checksum_address(sender),
            kernel_nonce_key(self.config.validator_address)
        ).call()

        logger.info(f"Current nonce: {nonce}")
        return nonce


def create_smart_account_context(config: SmartAccountConfig) -> SmartAccountContext:
    """Create a SmartAccountContext for the given configuration"""
    return SmartAccountContext(config)
