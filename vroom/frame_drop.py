"""Finding the cause of frozen frames in a profile."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence

from vroom.nodetree import Node
from vroom.occurrence import Category, NodeInfo, Occurrence, Profile, new_occurrence

MARGIN_PERCENT = 0.05
MIN_FRAME_DURATION_PERCENT = 0.5
START_LIMIT_PERCENT = 0.2
UNKNOWN_FRAMES_IN_THE_STACK_THRESHOLD = 0.8
_MIN_MARGIN_NS = 10_000_000


@dataclass
class NodeStack:
    """A candidate node, its depth and the stack of nodes leading to it."""

    depth: int
    n: Node
    st: List[Node] = field(default_factory=list)


@dataclass
class FrozenFrameStats:
    """Time window in which the cause of a frozen frame is searched."""

    duration_ns: int = 0
    end_ns: int = 0
    min_duration_ns: int = 0
    start_limit_ns: int = 0
    start_ns: int = 0

    @classmethod
    def create(cls, end_ns: int, duration_ns: float) -> "FrozenFrameStats":
        margin = int(max(duration_ns * MARGIN_PERCENT, float(_MIN_MARGIN_NS)))
        stats = cls(
            end_ns=end_ns + margin,
            duration_ns=int(duration_ns),
            min_duration_ns=int(duration_ns * MIN_FRAME_DURATION_PERCENT),
        )
        if end_ns >= stats.duration_ns + margin:
            stats.start_ns = end_ns - stats.duration_ns - margin
        stats.start_limit_ns = stats.start_ns + int(duration_ns * START_LIMIT_PERCENT)
        return stats

    def is_node_stack_valid(self, ns: NodeStack) -> bool:
        """Return True if the node can be considered a frame drop cause."""
        n = ns.n
        return (
            n.frame.function != ""
            and n.is_application
            and n.start_ns >= self.start_ns
            and n.end_ns <= self.end_ns
            and n.duration_ns >= self.min_duration_ns
            and n.start_ns <= self.start_limit_ns
        )


def _find_cause(
    n: Node, stats: FrozenFrameStats, stack: List[Node], depth: int
) -> Optional[NodeStack]:
    stack.append(n)
    try:
        longest: Optional[NodeStack] = None
        # Explore each branch to find the deepest valid node.
        for child in n.children:
            cause = _find_cause(child, stats, stack, depth + 1)
            if cause is None:
                continue
            if (
                longest is None
                or cause.n.duration_ns > longest.n.duration_ns
                or (
                    cause.n.duration_ns == longest.n.duration_ns
                    and cause.depth > longest.depth
                )
            ):
                longest = cause

        ns = NodeStack(depth, n)
        current = ns if stats.is_node_stack_valid(ns) else None

        if longest is None and current is None:
            return None
        if longest is None:
            current.st = list(stack)
            return current
        # Children win over the current node when at least as long.
        if current is None or longest.n.duration_ns >= current.n.duration_ns:
            return longest
        current.st = list(stack)
        return current
    finally:
        stack.pop()


def find_frame_drop_cause(
    profile: Profile,
    call_trees_per_thread_id: Mapping[int, Sequence[Node]],
) -> List[Occurrence]:
    """Return an occurrence for each frozen frame whose cause could be found."""
    occurrences: List[Occurrence] = []
    frame_drops = profile.measurements.get("frozen_frame_renders")
    if frame_drops is None:
        return occurrences
    call_trees = call_trees_per_thread_id.get(profile.transaction.active_thread_id)
    if call_trees is None:
        return occurrences

    for mv in frame_drops.values:
        stats = FrozenFrameStats.create(mv.elapsed_since_start_ns, mv.value)
        for root in call_trees:
            cause = _find_cause(root, stats, [], 0)
            if cause is None:
                continue
            stack_trace = [copy.deepcopy(node.to_frame()) for node in cause.st]
            unknown = sum(1 for node in cause.st if node.frame.function == "")
            # Too many unknown frames make the stack useless.
            if unknown >= len(stack_trace) * UNKNOWN_FRAMES_IN_THE_STACK_THRESHOLD:
                continue
            occurrences.append(
                new_occurrence(
                    profile,
                    NodeInfo(
                        category=Category.FRAME_DROP,
                        node=replace(cause.n),
                        stack_trace=stack_trace,
                    ),
                )
            )
            break
    return occurrences