"""Text rendering of a user's workload for the AI collaborator."""

from collections import Counter

from opustasks.services.queries import ContextSnapshot

INBOX_PREVIEW_LIMIT = 10


def format_context_for_ai(snapshot: ContextSnapshot) -> str:
    """Render the snapshot as the markdown block prepended to the user's message."""
    active_projects = [p for p in snapshot.projects if not p.is_archived]
    open_by_project = Counter(t.project_id for t in snapshot.tasks if t.project_id is not None)

    def in_project(task) -> str:
        name = snapshot.project_name(task.project_id)
        return f" in {name}" if name else ""

    if snapshot.overdue_tasks:
        overdue = "\n".join(
            f'- "{t.title}" (due {t.due_date.isoformat()}){in_project(t)}'
            for t in sorted(snapshot.overdue_tasks, key=lambda t: t.due_date)
        )
    else:
        overdue = "None! Great job staying on top of things."

    if snapshot.today_tasks:
        today = "\n".join(f'- "{t.title}"{in_project(t)}' for t in snapshot.today_tasks)
    else:
        today = "Nothing scheduled for today."

    if snapshot.inbox_tasks:
        inbox = "\n".join(f'- "{t.title}"' for t in snapshot.inbox_tasks[:INBOX_PREVIEW_LIMIT])
        hidden = len(snapshot.inbox_tasks) - INBOX_PREVIEW_LIMIT
        if hidden > 0:
            inbox += f"\n... and {hidden} more"
    else:
        inbox = "Inbox is empty."

    projects = "\n".join(
        f"- **{p.name}** (id {p.id}): {open_by_project.get(p.id, 0)} open tasks"
        for p in active_projects
    ) or "No active projects."

    return f"""## Current Task Data
Today: {snapshot.today.isoformat()}

### Summary
- Total open tasks: {len(snapshot.tasks)}
- Inbox tasks: {len(snapshot.inbox_tasks)}
- Due today: {len(snapshot.today_tasks)}
- Overdue: {len(snapshot.overdue_tasks)}
- Active projects: {len(active_projects)}

### Overdue Tasks
{overdue}

### Due Today
{today}

### Inbox (Uncategorized)
{inbox}

### Projects
{projects}
"""
