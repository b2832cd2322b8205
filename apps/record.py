#!/usr/bin/env python3
"""Record database statistics into a tar archive for later replay."""
from __future__ import annotations

import argparse
import re
import signal
import sys
import threading
import time

from collectors.postgres.connection import ConnectionConfig, PostgresConnection
from collectors.postgres.properties import get_postgres_properties
from statmon.exceptions.core import StatmonError
from statmon.runtime.record import DEFAULT_ARCHIVE, RecordConfig, RecordDriver
from statmon.utils.logger import get_logger, init_logging, log_error, log_info
from statmon.views.registry import default_views, prepare_views

logger = get_logger("statmon.apps.record")

_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)?$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """'500ms', '1s', '2m', '1h' or plain seconds -> seconds."""
    m = _DURATION_RE.match(text.strip())
    if m is None:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}")
    return float(m.group("value")) * _UNITS[m.group("unit") or "s"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__, add_help=False)
    parser.add_argument("-?", "--help", action="help", help="show this help and exit")

    conn = parser.add_argument_group("connection")
    conn.add_argument("-d", "--dbname", default=None, help="database name to connect to")
    conn.add_argument("-h", "--host", default=None, help="database server host or socket directory")
    conn.add_argument("-p", "--port", type=int, default=None, help="database server port")
    conn.add_argument("-U", "--username", default=None, help="database user name")
    parser.add_argument("positional", nargs="*", metavar="ARG", help="DBNAME [USERNAME]")

    parser.add_argument("-i", "--interval", type=parse_duration, default=1.0, help="recording interval (default: 1s)")
    parser.add_argument("-c", "--count", type=int, default=0, help="number of samples to record, 0 = until interrupted")
    parser.add_argument("-f", "--file", default=DEFAULT_ARCHIVE, help=f"output archive (default: {DEFAULT_ARCHIVE})")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("-a", "--append", dest="append", action="store_true", default=True,
                      help="append statistics to file (default)")
    mode.add_argument("--truncate", dest="append", action="store_false", help="start a fresh file")
    parser.add_argument("-s", "--strlimit", type=int, default=0, help="maximum query length to record, 0 = no limit")
    parser.add_argument("-1", "--oneshot", action="store_true",
                        help="append a single snapshot and exit (--interval 0 --count 1)")
    return parser


def configs_from_args(args: argparse.Namespace) -> tuple[ConnectionConfig, RecordConfig]:
    dbname, user = args.dbname, args.username
    if args.positional:
        dbname = dbname or args.positional[0]
        if len(args.positional) > 1:
            user = user or args.positional[1]

    conn_cfg = ConnectionConfig(host=args.host, port=args.port, user=user, dbname=dbname)
    if args.oneshot:
        record_cfg = RecordConfig.oneshot(args.file, string_limit=args.strlimit)
    else:
        record_cfg = RecordConfig(
            output=args.file,
            append=args.append,
            interval=args.interval,
            count=args.count,
            string_limit=args.strlimit,
        )
    return conn_cfg, record_cfg


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        conn_cfg, config = configs_from_args(args)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    init_logging(run_id=f"record_{int(time.time())}", mode="record")

    stop_event = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())

    try:
        with PostgresConnection(conn_cfg) as conn:
            props = get_postgres_properties(conn)
            views = prepare_views(
                default_views(),
                version=props.version_num,
                pgss_schema=props.pgss_schema,
                string_limit=config.string_limit,
            )
            print(f"INFO: recording to {config.output}")
            log_info(logger, "record.start", output=config.output, views=views.names(), server=props.version)
            RecordDriver(conn=conn, views=views, config=config, stop_event=stop_event).run()
    except StatmonError as exc:
        log_error(logger, "record.failed", stage=exc.stage, err=str(exc))
        print(f"ERROR: {exc.stage}: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
