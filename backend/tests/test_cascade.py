"""Tests for what deletes take with them and what they leave behind."""

from sqlalchemy import select

from opustasks.models import Project, ProjectShare, Section, Task
from opustasks.services.mutation_schemas import DeleteProject, DeleteSection, DeleteTask
from tests.conftest import reload


async def test_deleting_predecessor_unlinks_dependents(executor, db_session, alice, make_task):
    first = await make_task(alice, "X")
    second = await make_task(alice, "Y", blocked_by=first.id)

    change = await executor.apply(alice.id, DeleteTask(task_id=first.id))

    assert change.details["unlinked_dependent_ids"] == [str(second.id)]
    assert await reload(db_session, Task, first.id) is None
    survivor = await reload(db_session, Task, second.id)
    assert survivor is not None
    assert survivor.blocked_by is None


async def test_deleting_task_takes_its_subtasks(executor, db_session, alice, make_task):
    parent = await make_task(alice, "Parent")
    child = await make_task(alice, "Child", parent_task_id=parent.id)
    grandchild = await make_task(alice, "Grandchild", parent_task_id=child.id)
    sibling = await make_task(alice, "Sibling")

    change = await executor.apply(alice.id, DeleteTask(task_id=parent.id))

    assert set(change.details["deleted_task_ids"]) == {str(parent.id), str(child.id), str(grandchild.id)}
    remaining = (await db_session.execute(select(Task.id))).scalars().all()
    assert remaining == [sibling.id]


async def test_links_inside_deleted_subtree_are_not_reported(executor, alice, make_task):
    parent = await make_task(alice, "Parent")
    first = await make_task(alice, "First", parent_task_id=parent.id)
    await make_task(alice, "Second", parent_task_id=parent.id, blocked_by=first.id)

    change = await executor.apply(alice.id, DeleteTask(task_id=parent.id))
    assert change.details["unlinked_dependent_ids"] == []


async def test_deleting_project_moves_tasks_to_inbox(
    executor, db_session, alice, bob, make_project, make_section, make_task, share
):
    project = await make_project(alice, "Doomed")
    subproject = await make_project(alice, "Doomed child", parent_id=project.id)
    section = await make_section(project)
    await share(project, bob, "edit")
    mine = await make_task(alice, "Mine", project=project, section_id=section.id)
    theirs = await make_task(bob, "Theirs", project=project)
    nested = await make_task(alice, "Nested", project=subproject)

    change = await executor.apply(alice.id, DeleteProject(project_id=project.id))

    assert set(change.details["deleted_project_ids"]) == {str(project.id), str(subproject.id)}
    assert (await db_session.execute(select(Project))).scalars().all() == []
    assert (await db_session.execute(select(Section))).scalars().all() == []
    assert (await db_session.execute(select(ProjectShare))).scalars().all() == []

    for task_id, owner in ((mine.id, alice), (theirs.id, bob), (nested.id, alice)):
        task = await reload(db_session, Task, task_id)
        assert task.project_id is None
        assert task.section_id is None
        assert task.owner_id == owner.id


async def test_moved_tasks_land_in_their_owners_inbox_only(
    executor, db_session, queries, alice, bob, make_project, make_task, share
):
    project = await make_project(alice)
    await share(project, bob, "edit")
    theirs = await make_task(bob, "Bob's", project=project)

    await executor.apply(alice.id, DeleteProject(project_id=project.id))

    await reload(db_session, Task, theirs.id)
    assert [v.task.id for v in await queries.inbox(bob.id)] == [theirs.id]
    assert await queries.inbox(alice.id) == []


async def test_deleting_section_unsections_its_tasks(executor, db_session, alice, make_project, make_section, make_task):
    project = await make_project(alice)
    section = await make_section(project)
    task = await make_task(alice, "Filed", project=project, section_id=section.id)

    await executor.apply(alice.id, DeleteSection(section_id=section.id))

    assert await reload(db_session, Section, section.id) is None
    task = await reload(db_session, Task, task.id)
    assert task.project_id == project.id
    assert task.section_id is None
