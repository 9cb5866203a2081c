"""
Minimal contract interfaces for the ERC-20 tokens and the MockSwap contract
"""

import logging
from decimal import Decimal, InvalidOperation

from eth_abi import encode
from web3 import Web3

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
]

APPROVE_SELECTOR = Web3.keccak(text="approve(address,uint256)")[:4]
SWAP_A_TO_B_SELECTOR = Web3.keccak(text="swapAToB(uint256)")[:4]
# swapBToA(uint256) is assumed to mirror swapAToB on the deployed MockSwap
SWAP_B_TO_A_SELECTOR = Web3.keccak(text="swapBToA(uint256)")[:4]

DEFAULT_DECIMALS = 18


def encode_approve(spender: str, amount: int) -> str:
    """Calldata for ERC-20 approve(spender, amount)"""
    encoded = encode(["address", "uint256"], [Web3.to_checksum_address(spender), amount])
    return "0x" + (bytes(APPROVE_SELECTOR) + encoded).hex()


def encode_swap(amount: int, a_to_b: bool = True) -> str:
    """Calldata for MockSwap swapAToB(amount) or swapBToA(amount)"""
    selector = SWAP_A_TO_B_SELECTOR if a_to_b else SWAP_B_TO_A_SELECTOR
    return "0x" + (bytes(selector) + encode(["uint256"], [amount])).hex()


def _erc20(web3: Web3, token: str):
    return web3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)


def read_allowance(web3: Web3, token: str, owner: str, spender: str) -> int:
    """Read the ERC-20 allowance granted by owner to spender"""
    allowance = _erc20(web3, token).functions.allowance(
        Web3.to_checksum_address(owner),
        Web3.to_checksum_address(spender),
    ).call()
    logger.info(f"Allowance on {token} for {spender}: {allowance}")
    return int(allowance)


def read_decimals(web3: Web3, token: str) -> int:
    """Read token decimals, falling back to 18 when the call fails"""
    try:
        return int(_erc20(web3, token).functions.decimals().call())
    except Exception as e:
        logger.warning(f"Could not read decimals for {token}, assuming {DEFAULT_DECIMALS}: {e}")
        return DEFAULT_DECIMALS


def parse_units(amount: str, decimals: int) -> int:
    """Convert a decimal amount string to integer base units"""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValueError("Amount must be greater than 0")
    units = value.scaleb(decimals)
    if units != units.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(units)
