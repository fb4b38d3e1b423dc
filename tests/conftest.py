"""
Pytest configuration and Hypothesis strategies for property-based testing.

This module provides span/record builders and a Hypothesis strategy for
acyclic span forests (optionally with orphaned subtrees).
"""

import json
from pathlib import Path
from typing import Any

from hypothesis import strategies as st

from trace_timeline.parser import ROOT_SPAN_ID, Span

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Parent ids that never have a span record of their own
MISSING_PARENT_IDS = ("dead00000000beef", "feedface00000000")


def make_span(
    span_id: str = "s1",
    parent_span_id: str = ROOT_SPAN_ID,
    name: str = "span",
    start_time_unix_nano: int = 0,
    end_time_unix_nano: int = 100,
    trace_id: str = "t1",
    **kwargs: Any,
) -> Span:
    return Span(
        trace_id=trace_id,
        span_id=span_id,
        parent_span_id=parent_span_id,
        name=name,
        start_time_unix_nano=start_time_unix_nano,
        end_time_unix_nano=end_time_unix_nano,
        kind=kwargs.get("kind", ""),
        attributes=kwargs.get("attributes", {}),
        status=kwargs.get("status", {}),
        resource_attributes=kwargs.get("resource_attributes", {}),
    )


def chain_spans(depth: int) -> list[Span]:
    """A single parent chain s0 <- s1 <- ... with each span nested inside the previous one."""
    spans = []
    parent = ROOT_SPAN_ID
    for i in range(depth):
        spans.append(
            make_span(
                span_id=f"s{i}",
                parent_span_id=parent,
                name=f"level-{i}",
                start_time_unix_nano=i,
                end_time_unix_nano=10 * depth - i,
            )
        )
        parent = f"s{i}"
    return spans


def flat_record(
    span_id: str,
    parent: str = ROOT_SPAN_ID,
    name: str = "span",
    start: Any = 0,
    end: Any = 100,
    **extra: Any,
) -> str:
    """Serialize a span in the flat ``id/parentId/start/end`` shape."""
    record = {"id": span_id, "parentId": parent, "name": name, "startTime": start, "endTime": end}
    record.update(extra)
    return json.dumps(record)


# ============================================================================
# Strategies
# ============================================================================


@st.composite
def span_forest(draw, max_spans: int = 25, allow_orphans: bool = True) -> list[Span]:
    """
    Generate an acyclic set of spans in random arrival order.

    Every span's parent is the sentinel root, an earlier span, or (when
    ``allow_orphans``) one of MISSING_PARENT_IDS. Point spans (start == end)
    are generated too.

    Returns:
        List of Span objects with unique span ids
    """
    count = draw(st.integers(min_value=0, max_value=max_spans))
    spans: list[Span] = []
    for i in range(count):
        parents = [ROOT_SPAN_ID] + [s.span_id for s in spans]
        if allow_orphans:
            parents.extend(MISSING_PARENT_IDS)
        start = draw(st.integers(min_value=0, max_value=10_000_000))
        duration = draw(st.one_of(st.just(0), st.integers(min_value=1, max_value=5_000_000)))
        spans.append(
            make_span(
                span_id=f"{i + 1:016x}",
                parent_span_id=draw(st.sampled_from(parents)),
                name=draw(st.text(min_size=1, max_size=20)),
                start_time_unix_nano=start,
                end_time_unix_nano=start + duration,
            )
        )
    return draw(st.permutations(spans))
