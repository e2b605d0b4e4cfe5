"""Approval and rejection of AI pending actions.

Approved proposals run through the same mutation executor as any user edit,
in approval order, each in its own unit. Rejection only marks the proposal.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from opustasks.ai.assistant.schemas import ActionExecutionResult
from opustasks.exceptions import ConflictError, NotFoundError
from opustasks.models import AIPendingAction
from opustasks.services.mutations import MutationExecutor
from opustasks.services.repository import SqlEntityRepository

logger = structlog.get_logger()


async def _load_actions(db: AsyncSession, user_id: UUID, action_ids: List[UUID]) -> Dict[UUID, AIPendingAction]:
    result = await db.execute(
        select(AIPendingAction).where(
            AIPendingAction.id.in_(action_ids),
            AIPendingAction.user_id == user_id,
        )
    )
    return {action.id: action for action in result.scalars().all()}


async def expire_stale_actions(db: AsyncSession, user_id: UUID, now: Optional[datetime] = None) -> int:
    """Mark the user's pending actions past their expiry as expired."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(AIPendingAction).where(
            AIPendingAction.user_id == user_id,
            AIPendingAction.status == "pending",
        )
    )
    expired = 0
    for action in result.scalars().all():
        if action.is_expired(now):
            action.status = "expired"
            expired += 1
    if expired:
        await db.flush()
        logger.info("pending_actions_expired", user_id=str(user_id), count=expired)
    return expired


async def approve_actions(
    db: AsyncSession,
    user_id: UUID,
    action_ids: List[UUID],
    executor: Optional[MutationExecutor] = None,
) -> List[ActionExecutionResult]:
    """Run approved proposals in the order given.

    Unknown, foreign or already-decided actions fail individually; a failing
    mutation never undoes the ones approved before it.
    """
    executor = executor or MutationExecutor(SqlEntityRepository(db))
    actions = await _load_actions(db, user_id, action_ids)
    now = datetime.now(timezone.utc)

    results: List[ActionExecutionResult] = []
    for action_id in action_ids:
        action = actions.get(action_id)
        if action is None:
            error = NotFoundError("action")
            results.append(ActionExecutionResult(
                action_id=action_id, success=False, error_code=error.code, error=error.message
            ))
            continue

        if action.status != "pending":
            error = ConflictError(f"Action is already {action.status}")
            results.append(ActionExecutionResult(
                action_id=action_id, success=False, kind=action.kind,
                error_code=error.code, error=error.message,
            ))
            continue

        if action.is_expired(now):
            action.status = "expired"
            results.append(ActionExecutionResult(
                action_id=action_id, success=False, kind=action.kind,
                error_code="EXPIRED", error="Action has expired",
            ))
            continue

        outcome = (await executor.apply_batch(user_id, [action.payload]))[0]
        action.executed_at = datetime.now(timezone.utc)
        action.result = outcome.to_dict()
        if outcome.success:
            action.status = "executed"
        else:
            action.status = "failed"
            action.error = outcome.message

        results.append(ActionExecutionResult(
            action_id=action_id,
            success=outcome.success,
            kind=action.kind,
            entity_id=outcome.entity_id,
            error_code=outcome.error_code,
            error=outcome.message,
        ))

    await db.flush()
    logger.info(
        "pending_actions_approved",
        user_id=str(user_id),
        total=len(results),
        failed=sum(1 for r in results if not r.success),
    )
    return results


async def reject_action(db: AsyncSession, user_id: UUID, action_id: UUID) -> AIPendingAction:
    """Discard a proposal. Domain state is never touched.

    Raises:
        NotFoundError: not one of the user's actions
        ConflictError: already executed or failed
    """
    action = (await _load_actions(db, user_id, [action_id])).get(action_id)
    if action is None:
        raise NotFoundError("action")
    if action.status in ("executed", "failed"):
        raise ConflictError(f"Action is already {action.status}")

    action.status = "rejected"
    action.rejected_at = datetime.now(timezone.utc)
    await db.flush()

    logger.info("pending_action_rejected", action_id=str(action_id), user_id=str(user_id))
    return action
