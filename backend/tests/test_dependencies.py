"""Tests for derived blocked state and predecessor chain checks."""

import pytest

from opustasks.exceptions import CycleError
from opustasks.services.dependencies import DependencyEngine


@pytest.fixture
def deps(repository) -> DependencyEngine:
    return DependencyEngine(repository, max_depth=50)


async def test_blocked_while_predecessor_open(deps, alice, make_task):
    first = await make_task(alice, "Draft")
    second = await make_task(alice, "Review", blocked_by=first.id)

    assert await deps.is_blocked(second)
    assert not await deps.is_blocked(first)


async def test_unblocked_once_predecessor_done(deps, alice, make_task):
    first = await make_task(alice, "Draft", status="done")
    second = await make_task(alice, "Review", blocked_by=first.id)

    assert not await deps.is_blocked(second)


async def test_cancelled_predecessor_still_blocks(deps, alice, make_task):
    first = await make_task(alice, "Draft", status="cancelled")
    second = await make_task(alice, "Review", blocked_by=first.id)

    assert await deps.is_blocked(second)


async def test_blocked_ids_in_one_pass(deps, alice, make_task):
    open_pred = await make_task(alice, "Open")
    done_pred = await make_task(alice, "Done", status="done")
    a = await make_task(alice, "A", blocked_by=open_pred.id)
    b = await make_task(alice, "B", blocked_by=done_pred.id)
    c = await make_task(alice, "C")

    assert await deps.blocked_ids([a, b, c]) == {a.id}


async def test_self_reference_rejected(deps, alice, make_task):
    task = await make_task(alice)
    with pytest.raises(CycleError):
        await deps.check_predecessor(task.id, task.id)


async def test_cycle_through_chain_rejected(deps, alice, make_task):
    c = await make_task(alice, "C")
    b = await make_task(alice, "B", blocked_by=c.id)
    a = await make_task(alice, "A", blocked_by=b.id)

    with pytest.raises(CycleError):
        await deps.check_predecessor(c.id, a.id)


async def test_unrelated_chain_accepted(deps, alice, make_task):
    c = await make_task(alice, "C")
    b = await make_task(alice, "B", blocked_by=c.id)
    other = await make_task(alice, "Other")

    await deps.check_predecessor(other.id, b.id)


async def test_chain_deeper_than_limit_rejected(repository, alice, make_task):
    shallow = DependencyEngine(repository, max_depth=2)
    root = await make_task(alice, "Root")
    middle = await make_task(alice, "Middle", blocked_by=root.id)
    leaf = await make_task(alice, "Leaf", blocked_by=middle.id)
    newcomer = await make_task(alice, "New")

    with pytest.raises(CycleError):
        await shallow.check_predecessor(newcomer.id, leaf.id)


async def test_on_completed_reports_open_dependents(deps, alice, make_task):
    first = await make_task(alice, "Draft", status="done")
    waiting = await make_task(alice, "Review", blocked_by=first.id)
    await make_task(alice, "Closed", blocked_by=first.id, status="cancelled")

    assert await deps.on_completed(first) == [waiting.id]
