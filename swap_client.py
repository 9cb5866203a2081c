"""
Swap client: approve, confirm the allowance on chain, then swap through the orchestration endpoint
"""

import argparse
import asyncio
import json
import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from web3 import Web3

from config import TOKEN_A, SwapClientConfig, get_token
from contracts import encode_approve, encode_swap, parse_units, read_allowance, read_decimals
from polling import await_condition
from user_operations import Call

logger = logging.getLogger(__name__)

# Saga steps, in the order they can occur
STEP_STARTED = "started"
STEP_APPROVED = "approved"
STEP_ALLOWANCE_CONFIRMED = "allowance_confirmed"
STEP_SWAPPED = "swapped"
STEP_FAILED = "failed"
STEP_REVOKED = "revoked"


class EndpointError(Exception):
    """The orchestration endpoint answered with an error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AllowanceTimeoutError(Exception):
    """The allowance did not reach the swap amount within the polling budget"""


@dataclass
class SwapResult:
    swap_id: str
    status: str
    user_op_hash: Optional[str] = None
    error: Optional[str] = None
    steps: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class SwapJournal:
    """Appends saga step records as JSON lines so interrupted swaps can be reconciled"""

    def __init__(self, path: Optional[str] = None):
        self.path = path

    def record(self, result: SwapResult, step: str, **details) -> None:
        entry = {
            "swap_id": result.swap_id,
            "step": step,
            "at": datetime.now(timezone.utc).isoformat(),
            **details,
        }
        result.steps.append(entry)
        logger.info(f"Swap {result.swap_id}: {step}")
        if self.path:
            with open(self.path, "a", encoding="utf-8") as journal:
                journal.write(json.dumps(entry) + "\n")


def load_journal(path: str) -> Dict[str, List[Dict[str, Any]]]:
    """Group journal records by swap id"""
    swaps: Dict[str, List[Dict[str, Any]]] = {}
    with open(path, encoding="utf-8") as journal:
        for line in journal:
            line = line.strip()
            if line:
                entry = json.loads(line)
                swaps.setdefault(entry["swap_id"], []).append(entry)
    return swaps


def dangling_approvals(path: str) -> List[Dict[str, Any]]:
    """Swaps whose approval went through but that neither swapped nor revoked"""
    dangling = []
    for swap_id, entries in load_journal(path).items():
        steps = {entry["step"] for entry in entries}
        if STEP_APPROVED in steps and not steps & {STEP_SWAPPED, STEP_REVOKED}:
            dangling.append(entries[0])
    return dangling


class SwapClient:
    """Drives one swap as two independent round trips to the orchestration endpoint"""

    def __init__(
        self,
        config: SwapClientConfig,
        web3: Optional[Web3] = None,
        session: Optional[requests.Session] = None,
        journal: Optional[SwapJournal] = None,
    ):
        self.config = config
        self.web3 = web3 or Web3(Web3.HTTPProvider(config.rpc_url))
        self.session = session or requests.Session()
        self.journal = journal or SwapJournal(config.journal_path)

    def get_account_address(self) -> str:
        """Ask the endpoint for the smart account address"""
        response = self.session.get(self.config.endpoint_url, timeout=self.config.request_timeout)
        body = self._json(response)
        if not response.ok or "address" not in body:
            raise EndpointError(body.get("error") or "Could not fetch smart account address", response.status_code)
        return body["address"]

    def submit_calls(self, calls: Sequence[Call]) -> str:
        """POST calls to the endpoint, which returns once the UserOperation is submitted"""
        payload = {"calls": [{"to": call.to, "data": call.data} for call in calls]}
        response = self.session.post(self.config.endpoint_url, json=payload, timeout=self.config.request_timeout)
        body = self._json(response)
        if not response.ok:
            raise EndpointError(body.get("error") or f"Request failed with status {response.status_code}",
                                response.status_code)
        return body.get("userOpHash")

    async def wait_for_allowance(self, token: str, owner: str, spender: str, amount: int) -> bool:
        """Poll the chain directly until the allowance covers ``amount``"""
        return await await_condition(
            lambda: read_allowance(self.web3, token, owner, spender) >= amount,
            attempts=self.config.poll_attempts,
            interval=self.config.poll_interval,
            backoff=self.config.poll_backoff,
            description=f"allowance of {amount} on {token}",
        )

    async def swap(self, from_symbol: str, to_symbol: str, amount: str) -> SwapResult:
        """Approve, confirm and swap; every failure collapses into an error result"""
        result = SwapResult(swap_id=uuid.uuid4().hex, status="pending")
        spender = self.config.swap_address
        approved = False
        from_token = None

        try:
            from_token = get_token(from_symbol)
            to_token = get_token(to_symbol)
            if from_token == to_token:
                raise ValueError("Source and destination tokens must differ")

            owner = self.get_account_address()
            decimals = read_decimals(self.web3, from_token.address)
            amount_units = parse_units(amount, decimals)
            self.journal.record(result, STEP_STARTED, token=from_token.address, owner=owner,
                                spender=spender, amount=str(amount_units))

            # 1) approve the swap contract to pull the source token
            approve_call = Call(to=from_token.address, data=encode_approve(spender, amount_units))
            approve_hash = self.submit_calls([approve_call])
            approved = True
            self.journal.record(result, STEP_APPROVED, user_op_hash=approve_hash)

            # 2) confirm the allowance is visible on chain
            if not await self.wait_for_allowance(from_token.address, owner, spender, amount_units):
                raise AllowanceTimeoutError("Allowance did not update in time.")
            self.journal.record(result, STEP_ALLOWANCE_CONFIRMED)

            # 3) swap
            swap_call = Call(to=spender, data=encode_swap(amount_units, a_to_b=from_token.symbol == TOKEN_A))
            result.user_op_hash = self.submit_calls([swap_call])
            result.status = "success"
            self.journal.record(result, STEP_SWAPPED, user_op_hash=result.user_op_hash)
        except Exception as e:
            if result.succeeded:
                # the swap is already with the bundler; a revoke would reuse its nonce
                logger.error(f"Swap {result.swap_id} submitted as {result.user_op_hash} but not journaled: {e}")
                return result
            logger.error(f"Swap error: {e}")
            result.status = "error"
            result.error = str(e) or e.__class__.__name__
            self.journal.record(result, STEP_FAILED, error=result.error)
            if approved and self.config.revoke_on_failure:
                self._revoke(result, from_token.address, spender)

        return result

    def _revoke(self, result: SwapResult, token: str, spender: str) -> None:
        try:
            revoke_hash = self.submit_calls([Call(to=token, data=encode_approve(spender, 0))])
        except Exception as e:
            logger.error(f"Could not revoke allowance on {token}: {e}")
            return
        self.journal.record(result, STEP_REVOKED, user_op_hash=revoke_hash)

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Gas-sponsored token swaps from a Kernel smart account")
    parser.add_argument("--endpoint", help="Orchestration endpoint URL (default: $SWAP_API_URL)")
    parser.add_argument("--rpc-url", help="Chain RPC used for allowance polling (default: $SEPOLIA_RPC_URL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    swap_parser = subparsers.add_parser("swap", help="Swap one token for the other")
    swap_parser.add_argument("from_token", help="Token to sell (USDC or PEPE)")
    swap_parser.add_argument("to_token", help="Token to buy (USDC or PEPE)")
    swap_parser.add_argument("amount", help="Amount to sell, in whole tokens (e.g. 1.5)")

    subparsers.add_parser("address", help="Show the smart account address")

    pending_parser = subparsers.add_parser("pending", help="List approvals left without a swap or revoke")
    pending_parser.add_argument("journal", help="Path to the swap journal")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    if args.command == "pending":
        for entry in dangling_approvals(args.journal):
            print(f"- {entry['swap_id']}: token {entry.get('token')} spender {entry.get('spender')}")
        return 0

    client = SwapClient(SwapClientConfig(endpoint_url=args.endpoint, rpc_url=args.rpc_url))

    if args.command == "address":
        try:
            print(client.get_account_address())
        except (EndpointError, requests.RequestException) as e:
            print(f"❌ {e}")
            return 1
        return 0

    result = asyncio.run(client.swap(args.from_token, args.to_token, args.amount))
    if result.succeeded:
        print(f"✅ Swap submitted: {result.user_op_hash}")
        return 0
    print(f"❌ Swap failed: {result.error}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
