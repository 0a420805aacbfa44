"""Active-branch resolution over a conversation's generation groups.

A conversation that has been regenerated or forked is stored as a flat set of
messages. ``generation_group_id`` ties alternative generations of one pass
together and ``parent_group_id`` points at the group a new generation
supersedes. Resolution walks the messages in ``(created_time, id)`` order and
keeps the single path the user currently sees.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from transcript_engine.core.models import Message
from transcript_engine.log import get_logger

logger = get_logger(__name__)


class DanglingSupersessionError(ValueError):
    """A message supersedes a generation group that never appeared."""

    def __init__(self, message_id: int, parent_group_id: str):
        super().__init__(
            f"Message {message_id} supersedes unknown generation group '{parent_group_id}'"
        )
        self.message_id = message_id
        self.parent_group_id = parent_group_id


@dataclass
class GroupNode:
    """One generation group and its supersession edges."""

    group_id: str
    first_message_id: int
    member_ids: list[int] = field(default_factory=list)
    parent_group_id: Optional[str] = None
    children: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VersionInfo:
    """``current`` of ``total`` versions of one generation, 1-based."""

    current: int
    total: int
    root_group_id: str


@dataclass
class GenerationForest:
    """Generation groups linked by supersession, in first-seen order."""

    nodes: dict[str, GroupNode] = field(default_factory=dict)
    dangling_refs: list[tuple[int, str]] = field(default_factory=list)

    def add_member(self, group_id: str, message_id: int) -> GroupNode:
        node = self.nodes.get(group_id)
        if node is None:
            node = GroupNode(group_id=group_id, first_message_id=message_id)
            self.nodes[group_id] = node
        node.member_ids.append(message_id)
        return node

    def link(self, parent_group_id: str, child_group_id: str) -> None:
        child = self.nodes[child_group_id]
        if child.parent_group_id is not None:
            return
        child.parent_group_id = parent_group_id
        self.nodes[parent_group_id].children.append(child_group_id)

    def root_of(self, group_id: str) -> str:
        seen: set[str] = set()
        current = group_id
        while current not in seen:
            seen.add(current)
            parent = self.nodes[current].parent_group_id
            if parent is None or parent not in self.nodes:
                break
            current = parent
        return current

    def lineage(self, group_id: str) -> list[str]:
        """Every version of *group_id*'s generation, oldest first.

        Walks from the root group through supersession edges, so the result
        is the same for any group in the chain. Used for "version n of m".
        """
        if group_id not in self.nodes:
            return []
        root = self.root_of(group_id)
        seen = {root}
        pending = list(self.nodes[root].children)
        while pending:
            current = pending.pop(0)
            if current in seen:
                continue
            seen.add(current)
            pending.extend(self.nodes[current].children)
        seen.discard(root)
        # Later versions in creation order, by their first message id.
        return [root] + sorted(seen, key=lambda g: self.nodes[g].first_message_id)

    def version_of(self, group_id: str) -> VersionInfo | None:
        """Position of *group_id* among its versions; None unless there are several."""
        chain = self.lineage(group_id)
        if len(chain) < 2:
            return None
        return VersionInfo(current=chain.index(group_id) + 1, total=len(chain), root_group_id=chain[0])

    def merge(
        self,
        original_group_id: str,
        new_group_id: str,
        first_message_id: int | None = None,
    ) -> None:
        """Record that *new_group_id* regenerates *original_group_id*.

        The feed announces a regeneration before its messages are stored;
        *first_message_id* lets the new group count as a version already.
        """
        if original_group_id == new_group_id or original_group_id not in self.nodes:
            return
        if new_group_id not in self.nodes:
            if first_message_id is None:
                return
            self.add_member(new_group_id, first_message_id)
        self.link(original_group_id, new_group_id)

    def dangling(self) -> list[tuple[int, str]]:
        """``(message_id, parent_group_id)`` pairs whose parent never appeared."""
        return list(self.dangling_refs)


@dataclass
class BranchResolution:
    messages: list[Message]
    forest: GenerationForest


class BranchResolver:
    """Resolves a message set into the active transcript."""

    def __init__(self, strict: bool = False):
        self._strict = strict

    def resolve(self, messages: Iterable[Message]) -> list[Message]:
        return self.resolve_with_forest(messages).messages

    def resolve_with_forest(self, messages: Iterable[Message]) -> BranchResolution:
        ordered = sorted(messages, key=lambda m: m.sort_key)
        forest = GenerationForest()
        result: list[Message] = []

        for message in ordered:
            parent = message.parent_group_id
            if parent is not None:
                if parent in forest.nodes:
                    cut = next(
                        (i for i, m in enumerate(result) if m.generation_group_id == parent),
                        None,
                    )
                    if cut is not None:
                        del result[cut:]
                else:
                    forest.dangling_refs.append((message.id, parent))
                    if self._strict:
                        raise DanglingSupersessionError(message.id, parent)
                    logger.debug(
                        "dangling_supersession",
                        message_id=message.id,
                        parent_group_id=parent,
                    )

            group = message.generation_group_id
            if group is not None:
                result = [m for m in result if m.generation_group_id != group]
                forest.add_member(group, message.id)
                if parent is not None and parent in forest.nodes and parent != group:
                    forest.link(parent, group)

            result.append(message)

        return BranchResolution(messages=result, forest=forest)


def resolve_active_branch(messages: Iterable[Message], strict: bool = False) -> list[Message]:
    """Shortcut for ``BranchResolver(strict).resolve(messages)``."""
    return BranchResolver(strict=strict).resolve(messages)
