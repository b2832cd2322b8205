#!/usr/bin/env python3
"""Replay statistics recorded by record.py as rate tables."""
from __future__ import annotations

import argparse
import sys

from statmon.archive.naming import parse_bound
from statmon.exceptions.core import StatmonError
from statmon.report.builder import ReportBuilder, ReportConfig, parse_grep
from statmon.runtime.record import DEFAULT_ARCHIVE
from statmon.utils.logger import get_logger, init_logging, log_error
from statmon.views.registry import default_views

logger = get_logger("statmon.apps.report")

DATABASES_SELECTORS = {"g": "databases_general"}
STATEMENTS_SELECTORS = {"m": "statements_timings", "i": "statements_io"}

_SINGLE_FLAGS = {
    "activity": "activity",
    "replication": "replication",
    "tables": "tables",
    "indexes": "indexes",
    "sizes": "sizes",
    "functions": "functions",
    "wal": "wal",
}


def _bound(text: str):
    try:
        return parse_bound(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _grep(text: str):
    try:
        return parse_grep(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, add_help=False)
    parser.add_argument("-?", "--help", action="help", help="show this help and exit")

    parser.add_argument("-f", "--file", default=DEFAULT_ARCHIVE, help=f"read stats from file (default: {DEFAULT_ARCHIVE})")
    parser.add_argument("-s", "--start", type=_bound, default=None, help="starting time ([YYYY-MM-DD] HH:MM:SS)")
    parser.add_argument("-e", "--end", type=_bound, default=None, help="ending time ([YYYY-MM-DD] HH:MM:SS)")
    parser.add_argument("-o", "--order", default=None, help="order values by column")
    order = parser.add_mutually_exclusive_group()
    order.add_argument("--desc", dest="desc", action="store_true", default=True, help="descending order (default)")
    order.add_argument("--asc", dest="desc", action="store_false", help="ascending order")
    parser.add_argument("-g", "--grep", type=_grep, default=None, help="filter values in column (colname:pattern)")
    parser.add_argument("-l", "--limit", type=int, default=0, help="rows per sample, 0 = unlimited")
    parser.add_argument("-t", "--strlimit", type=int, default=32, help="maximum string size to print, 0 disables")

    cats = parser.add_argument_group("report options")
    cats.add_argument("-A", "--activity", action="store_true", help="pg_stat_activity statistics")
    cats.add_argument("-R", "--replication", action="store_true", help="pg_stat_replication statistics")
    cats.add_argument("-T", "--tables", action="store_true", help="pg_stat_user_tables statistics")
    cats.add_argument("-I", "--indexes", action="store_true", help="pg_stat_user_indexes statistics")
    cats.add_argument("-S", "--sizes", action="store_true", help="tables sizes statistics")
    cats.add_argument("-F", "--functions", action="store_true", help="pg_stat_user_functions statistics")
    cats.add_argument("-W", "--wal", action="store_true", help="pg_stat_wal statistics")
    cats.add_argument("-D", "--databases", metavar="SELECTOR", default=None,
                      help="pg_stat_database statistics: 'g' general")
    cats.add_argument("-X", "--statements", metavar="SELECTOR", default=None,
                      help="pg_stat_statements statistics: 'm' timings, 'i' io")
    parser.add_argument("-d", "--describe", action="store_true", help="show statistics description and exit")
    return parser


def categories_from_args(args: argparse.Namespace) -> tuple[str, ...]:
    selected = [name for flag, name in _SINGLE_FLAGS.items() if getattr(args, flag)]
    for value, table, flag in (
        (args.databases, DATABASES_SELECTORS, "--databases"),
        (args.statements, STATEMENTS_SELECTORS, "--statements"),
    ):
        if value is None:
            continue
        if value not in table:
            raise ValueError(f"unknown {flag} selector {value!r}, choose from {sorted(table)}")
        selected.append(table[value])
    if not selected:
        raise ValueError("no report option selected, see --help")
    return tuple(selected)


def config_from_args(args: argparse.Namespace) -> ReportConfig:
    return ReportConfig(
        input=args.file,
        start=args.start,
        end=args.end,
        categories=categories_from_args(args),
        order_column=args.order,
        order_desc=args.desc,
        grep=args.grep,
        limit=args.limit,
        string_limit=args.strlimit,
    )


def main(argv: list[str] | None = None, out=None) -> int:
    out = out or sys.stdout
    args = build_parser().parse_args(argv)
    try:
        config = config_from_args(args)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    views = default_views()
    if args.describe:
        for name in config.categories:
            out.write(f"{name}: {views.get(name).description}\n")
        return 0

    init_logging(mode="report")
    try:
        ReportBuilder(config, views=views).run(out)
    except StatmonError as exc:
        log_error(logger, "report.failed", stage=exc.stage, err=str(exc))
        print(f"ERROR: {exc.stage}: {exc}", file=sys.stderr)
        return 1
    except OSError as exc:
        log_error(logger, "report.failed", stage="archive read", err=str(exc))
        print(f"ERROR: archive read: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
