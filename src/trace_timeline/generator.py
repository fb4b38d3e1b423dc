"""HTML timeline generator — produces a self-contained HTML page from a span tree."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

from trace_timeline.tree import SpanNode

_CSS_FILES = ("style.css",)
_VIEWER_DIR = Path(__file__).parent / "viewer"

_NANOS_PER_MICRO = 1_000
_NANOS_PER_MILLI = 1_000_000
_NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MINUTE = 60 * _NANOS_PER_SECOND
_NANOS_PER_HOUR = 60 * _NANOS_PER_MINUTE


@dataclass
class ReportOptions:
    """Options controlling report generation."""

    title: Optional[str] = None


def _fraction(value: int, unit: int) -> str:
    """Format value/unit as a decimal without trailing zeros."""
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = str(frac).rjust(len(str(unit)) - 1, "0").rstrip("0")
    return f"{whole}.{digits}"


def format_duration(nanos: int) -> str:
    """Format a nanosecond duration as a short string such as ``1.5ms`` or ``1m30s``."""
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    n = abs(nanos)

    if n < _NANOS_PER_MICRO:
        return f"{sign}{n}ns"
    if n < _NANOS_PER_MILLI:
        return f"{sign}{_fraction(n, _NANOS_PER_MICRO)}µs"
    if n < _NANOS_PER_SECOND:
        return f"{sign}{_fraction(n, _NANOS_PER_MILLI)}ms"

    hours, rest = divmod(n, _NANOS_PER_HOUR)
    minutes, rest = divmod(rest, _NANOS_PER_MINUTE)
    seconds = _fraction(rest, _NANOS_PER_SECOND)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def compute_margins(parent: SpanNode, node: SpanNode) -> Tuple[float, float]:
    """Return (left, right) margins of ``node`` as percentages of ``parent``'s duration.

    A zero-length parent yields (0.0, 0.0).
    """
    total = parent.span.duration_nano
    if total == 0:
        return 0.0, 0.0
    left = node.span.start_time_unix_nano - parent.span.start_time_unix_nano
    right = parent.span.end_time_unix_nano - node.span.end_time_unix_nano
    return 100.0 * left / total, 100.0 * right / total


def _label(node: SpanNode) -> str:
    return f"{_escape_html(node.span.name)} {format_duration(node.span.duration_nano)}"


def _open_container(node: SpanNode, parent: Optional[SpanNode]) -> str:
    if parent is None:
        return "<div>"

    left, right = compute_margins(parent, node)
    classes = []
    if not node.is_leaf:
        classes.append("parent")
    if node.synthetic:
        classes.append("missing")
    class_attr = f' class="{" ".join(classes)}"' if classes else ""
    return f'<div{class_attr} style="margin: 1px {right:f}% 0 {left:f}%">'


def _render(node: SpanNode, parent: Optional[SpanNode], out: List[str]) -> None:
    # Pending work is either a (node, parent) pair to open or closing markup.
    stack: List[Union[Tuple[SpanNode, Optional[SpanNode]], str]] = [(node, parent)]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            out.append(item)
            continue

        current, current_parent = item
        out.append(_open_container(current, current_parent))
        if current.is_leaf:
            out.append(f"<span>{_label(current)}</span></div>\n")
            continue

        out.append("<details open>" if current_parent is None else "<details>")
        out.append(f"<summary>{_label(current)}</summary>")
        stack.append("</details></div>\n")
        stack.extend((child, current) for child in reversed(current.children))


def render_node(node: SpanNode, parent: Optional[SpanNode] = None) -> str:
    """Render ``node`` and its subtree as nested containers.

    Without a parent the node is the top-level container and has no margin.
    """
    out: List[str] = []
    _render(node, parent, out)
    return "".join(out)


def embed_stylesheet() -> str:
    """Read and return the stylesheet from the viewer/ directory.

    Raises FileNotFoundError if any expected asset file is missing.
    """
    css_parts: List[str] = []
    for name in _CSS_FILES:
        path = _VIEWER_DIR / name
        if not path.exists():
            raise FileNotFoundError(
                f"Viewer asset missing: {path}  — installation may be corrupted"
            )
        css_parts.append(path.read_text(encoding="utf-8"))
    return "\n".join(css_parts)


def generate_report(root: SpanNode, options: ReportOptions | None = None) -> str:
    """Generate a self-contained HTML5 timeline string.

    The output contains the stylesheet inline — no external dependencies.
    """
    if options is None:
        options = ReportOptions()

    title = options.title or root.span.name or "trace timeline"
    css_content = embed_stylesheet()

    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{_escape_html(title)}</title>\n"
        "<style>\n"
        f"{css_content}\n"
        "</style>\n"
        "</head>\n"
        "<body>\n"
        f"{render_node(root)}"
        "</body>\n"
        "</html>\n"
    )


def _escape_html(text: str) -> str:
    """Minimal HTML escaping for text content."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )
