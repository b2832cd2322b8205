from __future__ import annotations

import argparse
import io
from datetime import datetime, time, timedelta
from pathlib import Path

import pytest

from apps import record as record_app
from apps import report as report_app
from collectors.postgres.properties import PostgresProperties
from statmon.archive.reader import ArchiveReader
from statmon.archive.writer import ArchiveWriter
from statmon.data.snapshot import TabularSnapshot
from statmon.exceptions.core import SamplingError
from tests.helpers.factories import FakeConnection

T0 = datetime(2024, 3, 1, 12, 0, 0)


# ----------------------------------------------------------------------
# record
# ----------------------------------------------------------------------
@pytest.mark.parametrize(
    "text, seconds",
    [("1", 1.0), ("2.5", 2.5), ("500ms", 0.5), ("3s", 3.0), ("2m", 120.0), ("1h", 3600.0)],
)
def test_parse_duration(text: str, seconds: float) -> None:
    assert record_app.parse_duration(text) == seconds


def test_parse_duration_rejects_garbage() -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        record_app.parse_duration("soon")


def test_record_args_to_configs() -> None:
    args = record_app.build_parser().parse_args(
        ["-h", "db.local", "-p", "5433", "-i", "10s", "-c", "5", "-f", "out.tar", "--truncate", "-s", "64", "app", "alice"]
    )
    conn_cfg, config = record_app.configs_from_args(args)
    assert (conn_cfg.host, conn_cfg.port, conn_cfg.dbname, conn_cfg.user) == ("db.local", 5433, "app", "alice")
    assert (config.output, config.append, config.interval, config.count, config.string_limit) == (
        "out.tar", False, 10.0, 5, 64
    )


def test_record_oneshot_flag() -> None:
    args = record_app.build_parser().parse_args(["-1", "-f", "one.tar"])
    _, config = record_app.configs_from_args(args)
    assert (config.interval, config.count, config.append) == (0.0, 1, True)


class _ContextConnection(FakeConnection):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def test_record_main_records_views(monkeypatch, tmp_path: Path, counter_views) -> None:
    conn = _ContextConnection({
        "q_counters": [(["datname", "commits", "rollbacks"], [("app", "1", "0")])],
        "q_sessions": [(["pid", "state"], [("4001", "active")])],
    })
    props = PostgresProperties("16.2", 160002, "f", "off", "", "")
    monkeypatch.setattr(record_app, "PostgresConnection", lambda cfg: conn)
    monkeypatch.setattr(record_app, "get_postgres_properties", lambda c: props)
    monkeypatch.setattr(record_app, "default_views", lambda: counter_views)
    monkeypatch.setattr(record_app.signal, "signal", lambda *a: None)

    out = tmp_path / "stat.tar"
    assert record_app.main(["-f", str(out), "-c", "2", "-i", "0"]) == 0
    assert conn.closed
    assert [e.category for e in ArchiveReader(out).read_all()] == ["counters", "sessions"] * 2


def test_record_main_reports_stage_on_failure(monkeypatch, tmp_path: Path, capsys) -> None:
    def fail(cfg):
        raise SamplingError("cannot connect: refused")

    monkeypatch.setattr(record_app, "PostgresConnection", fail)
    monkeypatch.setattr(record_app.signal, "signal", lambda *a: None)

    assert record_app.main(["-f", str(tmp_path / "stat.tar"), "-1"]) == 1
    assert "ERROR: sampling: cannot connect: refused" in capsys.readouterr().err


# ----------------------------------------------------------------------
# report
# ----------------------------------------------------------------------
@pytest.fixture
def archive(tmp_path: Path) -> Path:
    path = tmp_path / "stat.tar"
    writer = ArchiveWriter(path)
    for i in range(3):
        with writer.cycle(T0 + timedelta(seconds=i)) as w:
            w.write("tables", TabularSnapshot.build(
                ["relation", "seq_scan", "seq_tup_read", "idx_scan", "idx_tup_fetch",
                 "inserted", "updated", "deleted", "hot_updated", "live", "dead"],
                [("public.t1", str(10 * i), "0", "0", "0", "0", "0", "0", "0", "100", "0"),
                 ("public.t2", str(i), "0", "0", "0", "0", "0", "0", "0", "5", "0")],
            ))
            w.write("activity", TabularSnapshot.build(["pid", "state"], [("4001", "active")]))
    writer.finish()
    return path


def test_report_categories() -> None:
    parser = report_app.build_parser()
    args = parser.parse_args(["-T", "-D", "g", "-X", "m"])
    assert report_app.categories_from_args(args) == ("tables", "databases_general", "statements_timings")

    with pytest.raises(ValueError):
        report_app.categories_from_args(parser.parse_args([]))
    with pytest.raises(ValueError):
        report_app.categories_from_args(parser.parse_args(["-X", "z"]))


def test_report_config_from_args() -> None:
    args = report_app.build_parser().parse_args(
        ["-f", "in.tar", "-s", "12:00:00", "-e", "2024-03-01 13:00:00", "-o", "seq_scan", "--asc",
         "-g", "relation:^public", "-l", "5", "-t", "0", "-A"]
    )
    config = report_app.config_from_args(args)
    assert config.input == "in.tar"
    assert config.start == time(12, 0, 0)
    assert config.end == datetime(2024, 3, 1, 13, 0, 0)
    assert config.order_column == "seq_scan"
    assert config.order_desc is False
    assert config.grep == ("relation", "^public")
    assert (config.limit, config.string_limit, config.categories) == (5, 0, ("activity",))


def test_report_bad_bound_is_a_usage_error() -> None:
    with pytest.raises(SystemExit):
        report_app.build_parser().parse_args(["-s", "noon", "-A"])


def test_report_bad_grep_pattern_is_a_usage_error() -> None:
    with pytest.raises(SystemExit):
        report_app.build_parser().parse_args(["-g", "query:(", "-A"])


def test_report_main_prints_rates(archive: Path) -> None:
    out = io.StringIO()
    assert report_app.main(["-f", str(archive), "-T"], out=out) == 0
    text = out.getvalue()
    assert text.count("tables, interval 1.00s") == 2
    assert "activity" not in text
    assert "public.t1" in text


def test_report_main_describe() -> None:
    out = io.StringIO()
    assert report_app.main(["-d", "-W"], out=out) == 0
    assert out.getvalue() == "wal: pg_stat_wal\n"


def test_report_main_missing_file(tmp_path: Path, capsys) -> None:
    assert report_app.main(["-f", str(tmp_path / "absent.tar"), "-A"], out=io.StringIO()) == 1
    assert "ERROR: archive read:" in capsys.readouterr().err


def test_report_main_without_category(capsys) -> None:
    assert report_app.main([], out=io.StringIO()) == 2
    assert "no report option selected" in capsys.readouterr().err
