"""
Approve-then-swap orchestration over sponsored UserOperations
"""

import asyncio
import logging
from typing import List, Sequence

from config import OrchestrationSettings
from contracts import encode_approve
from polling import await_condition
from user_operations import Call

logger = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Base class for failures reported by the orchestration endpoint"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApprovalFailedError(OrchestrationError):
    """The approve UserOperation could not be submitted or confirmed"""

    def __init__(self, cause: Exception):
        super().__init__(f"Approve failed: {_describe(cause)}")


class AllowanceNotUpdatedError(OrchestrationError):
    """The approval was mined but the allowance still reads zero"""
    status_code = 400

    def __init__(self):
        super().__init__("Allowance not updated")


class SwapFailedError(OrchestrationError):
    """The swap UserOperation could not be submitted after a successful approval"""

    def __init__(self, cause: Exception):
        super().__init__(f"Swap failed: {_describe(cause)}")


class SubmissionFailedError(OrchestrationError):
    """A single combined UserOperation could not be submitted"""

    def __init__(self, cause: Exception):
        super().__init__(_describe(cause))


def _describe(error: Exception) -> str:
    return str(error) or error.__class__.__name__


async def execute_calls(context, calls: Sequence[Call], settings: OrchestrationSettings) -> str:
    """Submit ``calls`` from the smart account and return the resulting UserOperation hash.

    Exactly two calls are treated as approve followed by a dependent action:
    the approval is mined and its allowance confirmed before the second call
    is submitted. Any other count goes out as one combined UserOperation.
    """
    calls = list(calls)
    if len(calls) == 2:
        return await _approve_then_execute(context, calls, settings)

    try:
        user_op_hash = await context.send_user_operation(calls)
    except Exception as e:
        logger.error(f"Single call failed: {e}")
        raise SubmissionFailedError(e) from e

    logger.info(f"Submitted {len(calls)} call(s) as UserOperation {user_op_hash}")
    return user_op_hash


async def _approve_then_execute(context, calls: List[Call], settings: OrchestrationSettings) -> str:
    approve_call, action_call = calls
    token, spender = approve_call.to, action_call.to

    try:
        approve_user_op_hash = await context.send_user_operation([approve_call])
        logger.info(f"Approve UserOperation submitted: {approve_user_op_hash}")
        await context.wait_for_user_operation_receipt(approve_user_op_hash)

        # RPC reads can lag behind the bundler's receipt
        if settings.settle_delay > 0:
            logger.info(f"Waiting {settings.settle_delay:g}s for node state to settle")
            await asyncio.sleep(settings.settle_delay)

        owner = context.address

        async def allowance_granted() -> bool:
            return await context.read_allowance(token, owner, spender) > 0

        allowance_ok = await await_condition(
            allowance_granted,
            attempts=settings.allowance_check_attempts,
            interval=settings.allowance_check_interval,
            description=f"allowance on {token} for {spender}",
        )
    except Exception as e:
        logger.error(f"Approve step failed: {e}")
        raise ApprovalFailedError(e) from e

    if not allowance_ok:
        logger.error(f"Allowance on {token} for {spender} still zero after approval")
        raise AllowanceNotUpdatedError()

    try:
        user_op_hash = await context.send_user_operation([action_call])
    except Exception as e:
        logger.error(f"Swap step failed: {e}")
        if settings.revoke_on_swap_failure:
            await revoke_approval(context, token, spender)
        raise SwapFailedError(e) from e

    logger.info(f"Swap UserOperation submitted: {user_op_hash}")
    return user_op_hash


async def revoke_approval(context, token: str, spender: str) -> bool:
    """Compensate a dangling approval by resetting the allowance to zero"""
    revoke_call = Call(to=token, data=encode_approve(spender, 0))
    try:
        user_op_hash = await context.send_user_operation([revoke_call])
    except Exception as e:
        logger.error(f"Could not revoke allowance on {token} for {spender}: {e}")
        return False

    logger.info(f"Revoked allowance on {token} for {spender} in UserOperation {user_op_hash}")
    return True
