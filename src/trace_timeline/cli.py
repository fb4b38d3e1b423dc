"""CLI entry point for trace-timeline."""

from __future__ import annotations

import argparse
import sys

from trace_timeline import __version__
from trace_timeline.generator import ReportOptions, generate_report
from trace_timeline.parser import (
    MalformedRecordError,
    UnreadableInputError,
    index_spans,
    parse_file,
)
from trace_timeline.tree import CyclicAncestryError, build_tree, find_missing_parents


def main() -> int:
    """CLI entry point. Returns 0 on success, 1 on error."""
    parser = argparse.ArgumentParser(
        prog="trace-timeline",
        description="Render a stream of OpenTelemetry spans as a nested HTML timeline",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "input",
        nargs="?",
        default="-",
        help="Span file path (.json, .jsonl or .json.gz), or - for stdin (default: -)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default="-",
        help="Output HTML file path, or - for stdout (default: -)",
    )
    parser.add_argument(
        "--title",
        default=None,
        help="Page title (default: derived from the trace id)",
    )

    args = parser.parse_args()

    # parse → index → build tree → render, all before writing anything
    try:
        spans = parse_file(args.input)
        index = index_spans(spans)
        root = build_tree(index, title=args.title)
        html = generate_report(root, ReportOptions(title=args.title))

        if args.output == "-":
            sys.stdout.write(html)
            summary_stream = sys.stderr
        else:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(html)
            summary_stream = sys.stdout

        missing = len(find_missing_parents(index))
        print(
            f"Timeline generated: {args.output} "
            f"({len(spans)} spans, {missing} missing parents)",
            file=summary_stream,
        )
        return 0

    except (MalformedRecordError, UnreadableInputError, CyclicAncestryError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except PermissionError as exc:
        print(f"Error: Permission denied — {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
