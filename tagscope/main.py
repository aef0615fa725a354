#!/usr/bin/env python3
"""tagscope/main.py — command-line driver.

Usage examples
--------------
    # Per-tag field summary (the default view)
    tagscope walk.ir

    # Show which guard or write justified each access
    tagscope --deduce walk.ir

    # Both views, a different aggregate, four worker threads
    tagscope --deduce --types --type Expr --field Kind --sentinel KNONE -j 4 expr.ir

Exit codes
----------
    0   Success.
    1   Configuration error (type, field or tag constants not found).
    2   The IR file could not be read or is malformed.
    3   Internal invariant violation.

Every fatal error prints exactly one ``error: ...`` line on stdout; log
records go to stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence, TextIO

from tagscope import __version__
from tagscope.accesses import WriteAnchor
from tagscope.errors import TagScopeError
from tagscope.irtext import load_file
from tagscope.pipeline import (
    DEFAULT_FIELD,
    DEFAULT_SENTINEL,
    DEFAULT_TYPE,
    AnalysisConfig,
    analyze,
)
from tagscope.report import Reporter

_log = logging.getLogger("tagscope")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_CONFIG: int = 1
EXIT_LOAD: int = 2
EXIT_INTERNAL: int = 3
EXIT_INTERRUPTED: int = 130


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def _configure_logging(verbosity: int) -> None:
    """Set up the root ``tagscope`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("tagscope")
    root.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        root.addHandler(handler)


def _use_color(mode: str, stream: TextIO) -> bool:
    if mode == "always":
        return True
    if mode == "never":
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {text!r}")
    if value < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return value


def _build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tagscope",
        description=(
            "Report which fields of a tagged aggregate are used under each "
            "value of its discriminant."
        ),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    views = parser.add_argument_group("views")
    views.add_argument(
        "--deduce", "--provenance",
        dest="deduce",
        action="store_true",
        help="Print each typing fact with the accesses it guards.",
    )
    views.add_argument(
        "--types", "--summary",
        dest="types",
        action="store_true",
        help="Print the fields used under each tag (default when no view is chosen).",
    )

    target = parser.add_argument_group("target")
    target.add_argument(
        "--type",
        dest="type_name",
        default=DEFAULT_TYPE,
        metavar="NAME",
        help=f"Aggregate type to analyse (default: {DEFAULT_TYPE}).",
    )
    target.add_argument(
        "--field",
        default=DEFAULT_FIELD,
        metavar="NAME",
        help=f"Discriminant field (default: {DEFAULT_FIELD}).",
    )
    target.add_argument(
        "--sentinel",
        default=DEFAULT_SENTINEL,
        metavar="NAME",
        help=("First constant of the tag group "
              f"(default: {DEFAULT_SENTINEL})."),
    )

    analysis = parser.add_argument_group("analysis")
    analysis.add_argument(
        "-j", "--jobs",
        type=_positive_int,
        default=1,
        metavar="N",
        help="Worker threads for fact generation and collection (default: 1).",
    )
    analysis.add_argument(
        "--precise-writes",
        action="store_true",
        help=("Ignore accesses that precede a tag write in the same block."),
    )

    parser.add_argument(
        "--color",
        choices=("auto", "always", "never"),
        default="auto",
        help="Colorize output (default: auto).",
    )
    parser.add_argument(
        "irfile",
        metavar="IRFILE",
        help="IR interchange file to analyse.",
    )
    return parser


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace, out: TextIO) -> int:
    """Load, analyse and report according to parsed *args*."""
    config = AnalysisConfig(
        type_name=args.type_name,
        discriminant=args.field,
        sentinel=args.sentinel,
        workers=args.jobs,
        write_anchor=(WriteAnchor.INSTRUCTION if args.precise_writes
                      else WriteAnchor.BLOCK),
    )
    program = load_file(args.irfile)
    result = analyze(program, config)

    show_types = args.types or not args.deduce
    reporter = Reporter(result.descriptor, out,
                        color=_use_color(args.color, out))
    if args.deduce:
        shown = reporter.provenance(result.deductions)
        _log.info("%d of %d facts guard at least one access",
                  shown, len(result.deductions))
    if show_types:
        reporter.summary(result.usage)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None,
         stdout: Optional[TextIO] = None) -> int:
    """Run the tagscope CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.
    stdout:
        Stream for reports and diagnostics.  ``None`` → ``sys.stdout``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    out = stdout if stdout is not None else sys.stdout
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        return run(args, out)
    except TagScopeError as exc:
        _log.debug("%s [%s] during %s", type(exc).__name__, exc.code,
                   exc.phase.value, exc_info=True)
        out.write(f"error: {exc}\n")
        return exc.exit_code
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return EXIT_INTERRUPTED


# ---------------------------------------------------------------------------
# Module execution support
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    raise SystemExit(main())
