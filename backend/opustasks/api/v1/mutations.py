"""Generic mutation endpoints.

The UI can send any mutation in its wire format here; resource routes build
the same objects. Mutations arriving over HTTP always carry ``origin=user``.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel, Field

from opustasks.api.deps import Executor
from opustasks.api.v1.auth import CurrentUser
from opustasks.services.mutation_schemas import MutationOrigin, parse_mutation

router = APIRouter()


class MutationResponse(BaseModel):
    kind: str
    entity_type: str
    entity_id: UUID
    action: str
    successor_id: UUID | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    mutations: list[dict[str, Any]] = Field(..., min_length=1)


class BatchItemResponse(BaseModel):
    index: int
    kind: str | None
    success: bool
    entity_id: UUID | None = None
    error_code: str | None = None
    message: str | None = None


class BatchResponse(BaseModel):
    results: list[BatchItemResponse]
    succeeded: int
    failed: int


def _as_user(payload: dict[str, Any]) -> dict[str, Any]:
    return {**payload, "origin": MutationOrigin.USER.value}


@router.post("", response_model=MutationResponse)
async def apply_mutation(
    payload: dict[str, Any],
    current_user: CurrentUser,
    executor: Executor,
) -> MutationResponse:
    """Apply one mutation atomically."""
    change = await executor.apply(current_user.id, parse_mutation(_as_user(payload)))
    return MutationResponse(
        kind=change.kind,
        entity_type=change.entity_type,
        entity_id=change.entity_id,
        action=change.action,
        successor_id=change.successor.id if change.successor is not None else None,
        details=change.details,
    )


@router.post("/batch", response_model=BatchResponse)
async def apply_mutation_batch(
    request: BatchRequest,
    current_user: CurrentUser,
    executor: Executor,
) -> BatchResponse:
    """Apply mutations in order; each succeeds or fails on its own."""
    results = await executor.apply_batch(current_user.id, [_as_user(m) for m in request.mutations])
    items = [BatchItemResponse(**r.to_dict()) for r in results]
    failed = sum(1 for r in results if not r.success)
    return BatchResponse(results=items, succeeded=len(results) - failed, failed=failed)
