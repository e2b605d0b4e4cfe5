"""Helpers for self-referencing chains (project parents, subtasks, predecessors).

Chains are walked iteratively over id-indexed lookups with an explicit depth
bound, and trees are assembled from flat rows with a single id map, so cyclic
or very deep data can never recurse without limit.
"""

from typing import Awaitable, Callable, Generic, Hashable, Iterable, Sequence, TypeVar
from uuid import UUID

from opustasks.exceptions import CycleError

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

ParentLookup = Callable[[Iterable[UUID]], Awaitable[dict[UUID, UUID | None]]]


async def ensure_no_cycle(
    node_id: UUID,
    new_parent_id: UUID | None,
    lookup: ParentLookup,
    *,
    max_depth: int,
    relation: str,
) -> None:
    """Reject pointing ``node_id`` at ``new_parent_id`` if that closes a loop.

    Walks upward from ``new_parent_id`` one hop at a time. Meeting ``node_id``
    means the new link would make the node its own ancestor. A chain longer
    than ``max_depth`` is rejected as well, since it can't be verified.

    Raises:
        CycleError: if the link would create a cycle or the chain is too deep
    """
    if new_parent_id is None:
        return
    if new_parent_id == node_id:
        raise CycleError(f"A {relation} cannot reference itself")

    current: UUID | None = new_parent_id
    visited: set[UUID] = set()
    for _ in range(max_depth):
        if current is None:
            return
        if current == node_id:
            raise CycleError(f"This {relation} would create a cycle")
        if current in visited:
            # Pre-existing loop that doesn't involve node_id
            raise CycleError(f"The {relation} chain already contains a cycle")
        visited.add(current)
        parents = await lookup([current])
        current = parents.get(current)

    if current is not None:
        raise CycleError(f"The {relation} chain exceeds {max_depth} levels")


class TreeNode(Generic[T]):
    """A node of an assembled tree; ``children`` keeps the input order."""

    __slots__ = ("item", "children")

    def __init__(self, item: T):
        self.item = item
        self.children: list["TreeNode[T]"] = []

    def __repr__(self) -> str:
        return f"<TreeNode {self.item!r} children={len(self.children)}>"


def build_tree(
    items: Sequence[T],
    key: Callable[[T], K],
    parent_key: Callable[[T], K | None],
) -> list[TreeNode[T]]:
    """Assemble flat rows into a forest.

    Items whose parent is missing from ``items`` (hidden or filtered out)
    become roots, so a sharee still sees a shared subproject even when the
    parent is private.
    """
    nodes = {key(item): TreeNode(item) for item in items}
    roots: list[TreeNode[T]] = []
    for item in items:
        node = nodes[key(item)]
        parent_id = parent_key(item)
        if parent_id is not None and parent_id in nodes and parent_id != key(item):
            nodes[parent_id].children.append(node)
        else:
            roots.append(node)
    return roots
