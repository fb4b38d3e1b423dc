"""Span tree assembler — reconstructs hierarchy from the span index."""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterator, List, Optional

from trace_timeline.parser import ROOT_SPAN_ID, Span, SpanIndex


class CyclicAncestryError(ValueError):
    """A span is its own ancestor, so the hierarchy is not a tree."""

    def __init__(self, span_id: str) -> None:
        self.span_id = span_id
        super().__init__(f"cyclic ancestry: span {span_id!r} is its own ancestor")


@dataclass
class SpanNode:
    """A node in the span tree owning one span and its child nodes."""

    span: Span
    children: List[SpanNode] = field(default_factory=list)
    synthetic: bool = False

    @property
    def is_leaf(self) -> bool:
        return not self.children


def find_missing_parents(index: SpanIndex, root_id: str = ROOT_SPAN_ID) -> List[str]:
    """Return parent ids referenced by spans but absent from the index, in first-seen order."""
    return [
        parent_id
        for parent_id in index.children
        if parent_id != root_id and parent_id not in index.spans
    ]


def _placeholder(span_id: str, name: str, trace_id: str = "") -> Span:
    # Point span, so assembly stretches it over its children.
    return Span(
        trace_id=trace_id,
        span_id=span_id,
        parent_span_id=ROOT_SPAN_ID,
        name=name,
        start_time_unix_nano=0,
        end_time_unix_nano=0,
    )


def _default_title(index: SpanIndex) -> str:
    trace_ids = {s.trace_id for s in index.spans.values() if s.trace_id}
    if len(trace_ids) == 1:
        return f"trace {trace_ids.pop()}"
    return "trace"


def _finish(node: SpanNode) -> SpanNode:
    """Sort children by start time and stretch a point span over them."""
    if node.is_leaf:
        return node

    # list.sort is stable, so ties keep arrival order
    node.children.sort(key=lambda n: n.span.start_time_unix_nano)

    span = node.span
    if span.start_time_unix_nano == span.end_time_unix_nano:
        node.span = replace(
            span,
            start_time_unix_nano=min(c.span.start_time_unix_nano for c in node.children),
            end_time_unix_nano=max(c.span.end_time_unix_nano for c in node.children),
        )
    return node


def _attach_children(node: SpanNode, index: SpanIndex, ancestors: FrozenSet[str]) -> None:
    """Grow the subtree below ``node`` with an explicit stack.

    Descendants are finished as they are left, children before parents;
    ``node`` itself is left for the caller to finish.
    """
    on_path = set(ancestors)
    on_path.add(node.span.span_id)
    stack = [(node, iter(index.children.get(node.span.span_id, ())))]
    while stack:
        current, kids = stack[-1]
        kid = next(kids, None)
        if kid is None:
            stack.pop()
            on_path.discard(current.span.span_id)
            if current is not node:
                _finish(current)
            continue
        if kid.span_id in on_path:
            raise CyclicAncestryError(kid.span_id)
        child = SpanNode(span=kid)
        current.children.append(child)
        on_path.add(kid.span_id)
        stack.append((child, iter(index.children.get(kid.span_id, ()))))


def _assemble(node: SpanNode, index: SpanIndex, ancestors: FrozenSet[str]) -> SpanNode:
    _attach_children(node, index, ancestors)
    return _finish(node)


def build_tree(
    index: SpanIndex, root_id: str = ROOT_SPAN_ID, title: Optional[str] = None
) -> SpanNode:
    """Build the trace tree from a span index.

    Returns a synthetic root node for the whole trace.

    - Spans whose parent is ``root_id`` become children of the root
    - Each parent id with no span record gets a synthetic ``missing span``
      node, attached under the root, holding its orphaned subtree
    - Children are sorted by start_time_unix_nano ascending (stable)
    - Point spans (start == end) with children are stretched to cover them
    - Raises CyclicAncestryError if a span is reached through itself
    """
    root = SpanNode(
        span=_placeholder(root_id, title or _default_title(index)),
        synthetic=True,
    )

    if root_id not in index.children:
        warnings.warn(f"No root spans found under parent {root_id!r}", stacklevel=2)

    missing = find_missing_parents(index, root_id)
    for parent_id in missing:
        orphans = index.children[parent_id]
        warnings.warn(
            f"Missing parent span {parent_id!r} referenced by {len(orphans)} span(s)",
            stacklevel=2,
        )

    _attach_children(root, index, frozenset())
    for parent_id in missing:
        trace_id = index.children[parent_id][0].trace_id
        placeholder = SpanNode(
            span=_placeholder(parent_id, f"missing span {parent_id}", trace_id),
            synthetic=True,
        )
        root.children.append(_assemble(placeholder, index, frozenset({root_id})))
    _finish(root)

    reached = {n.span.span_id for n in iter_nodes(root) if not n.synthetic}
    unreachable = len(index.spans.keys() - reached)
    if unreachable:
        warnings.warn(
            f"{unreachable} span(s) are not reachable from any root and were not rendered",
            stacklevel=2,
        )
    return root


def iter_nodes(root: SpanNode) -> Iterator[SpanNode]:
    """Yield every node of the tree, depth-first, parents before children."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def count_nodes(root: SpanNode, include_synthetic: bool = True) -> int:
    return sum(1 for n in iter_nodes(root) if include_synthetic or not n.synthetic)
