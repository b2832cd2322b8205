from __future__ import annotations

import string
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Tuple

from statmon.delta.engine import DeltaSpec
from statmon.exceptions.core import UnknownView
from statmon.utils.logger import get_logger, log_info
from statmon.views import queries

_logger = get_logger(__name__)

PG_V13 = 130000
PG_V14 = 140000

_PLACEHOLDERS = {"pgss_schema", "query_text"}


@dataclass(frozen=True)
class QueryOptions:
    """Values substituted into view query templates."""

    string_limit: int = 0
    pgss_schema: str = ""

    @property
    def query_text(self) -> str:
        if self.string_limit > 0:
            return f"left(query, {int(self.string_limit)})"
        return "query"


@dataclass(frozen=True)
class ViewSpec:
    """
    One statistics category: its query and how its samples are diffed.

    columns, when set, names the columns the query returns; key and
    range indexes are checked against it.

    The engine never looks views up by itself; callers build a
    ViewRegistry and pass it down.
    """

    name: str
    query: str
    unique_key: int = 0
    diff_range: Tuple[int, int] = (0, 0)
    order_key: int = 0
    order_desc: bool = True
    min_version: int = 0
    description: str = ""
    columns: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.columns:
            return
        ncols = len(self.columns)
        if self.diff_range[1] >= ncols and self.diff_range != (0, 0):
            raise ValueError(f"view {self.name!r}: diff_range {self.diff_range} past last column")
        if self.unique_key >= ncols or self.order_key >= ncols:
            raise ValueError(f"view {self.name!r}: key column out of range")

    @property
    def requires_pgss(self) -> bool:
        return self.name.startswith("statements_")

    def version_ok(self, version: int) -> bool:
        return version >= self.min_version

    def render(self, opts: QueryOptions) -> "ViewSpec":
        fields = {f for _, f, _, _ in string.Formatter().parse(self.query) if f is not None}
        unknown = fields - _PLACEHOLDERS
        if unknown:
            raise ValueError(f"view {self.name!r}: unknown query placeholders {sorted(unknown)}")
        rendered = self.query.format(pgss_schema=opts.pgss_schema, query_text=opts.query_text)
        return replace(self, query=rendered)

    def delta_spec(self, *, elapsed: float = 0.0, order_key: int | None = None,
                   order_desc: bool | None = None, row_limit: int = 0) -> DeltaSpec:
        return DeltaSpec(
            unique_key=self.unique_key,
            diff_range=self.diff_range,
            elapsed=elapsed,
            order_key=self.order_key if order_key is None else order_key,
            order_desc=self.order_desc if order_desc is None else order_desc,
            row_limit=row_limit,
        )


class ViewRegistry:
    """Explicit name -> ViewSpec mapping, iterated in name order."""

    def __init__(self, views: Iterable[ViewSpec] = ()):
        self._views: Dict[str, ViewSpec] = {}
        for v in views:
            if v.name in self._views:
                raise ValueError(f"duplicate view name: {v.name}")
            self._views[v.name] = v

    def __contains__(self, name: object) -> bool:
        return name in self._views

    def __len__(self) -> int:
        return len(self._views)

    def __iter__(self) -> Iterator[ViewSpec]:
        for name in self.names():
            yield self._views[name]

    def names(self) -> List[str]:
        return sorted(self._views)

    def get(self, name: str) -> ViewSpec:
        try:
            return self._views[name]
        except KeyError:
            raise UnknownView(f"unknown view: {name}") from None

    def select(self, names: Iterable[str]) -> "ViewRegistry":
        return ViewRegistry(self.get(n) for n in names)

    def configure(self, opts: QueryOptions) -> "ViewRegistry":
        return ViewRegistry(v.render(opts) for v in self)

    def filter_supported(self, version: int, pgss_schema: str) -> Tuple[int, "ViewRegistry"]:
        """
        Drop views the server cannot answer: too new for `version`, or
        statements views when pg_stat_statements is not installed.
        """
        kept: List[ViewSpec] = []
        filtered = 0
        pgss_missing = False
        for v in self:
            if not v.version_ok(version):
                filtered += 1
                continue
            if v.requires_pgss and not pgss_schema:
                filtered += 1
                pgss_missing = True
                continue
            kept.append(v)

        if pgss_missing:
            log_info(_logger, "views.pgss_missing", detail="pg_stat_statements not found, skip recording it")
        if filtered:
            log_info(_logger, "views.filtered", filtered=filtered, version=version)
        return filtered, ViewRegistry(kept)


def default_views() -> ViewRegistry:
    return ViewRegistry([
        ViewSpec("activity", queries.PG_STAT_ACTIVITY, unique_key=0, diff_range=(0, 0),
                 order_key=7, order_desc=True, description="pg_stat_activity",
                 columns=("pid", "client", "user", "database", "state", "wait_etype", "wait_event",
                          "xact_age", "query_age", "query")),
        ViewSpec("databases_general", queries.PG_STAT_DATABASE_GENERAL, unique_key=0, diff_range=(1, 15),
                 order_key=1, description="pg_stat_database",
                 columns=("datname", "commits", "rollbacks", "reads", "hits", "returned", "fetched",
                          "inserts", "updates", "deletes", "conflicts", "deadlocks", "temp_files",
                          "temp_bytes", "read_t", "write_t", "stats_age")),
        ViewSpec("functions", queries.PG_STAT_FUNCTIONS, unique_key=0, diff_range=(2, 4),
                 order_key=2, description="pg_stat_user_functions",
                 columns=("funcid", "function", "calls", "total_t", "self_t", "avg_t")),
        ViewSpec("indexes", queries.PG_STAT_INDEXES, unique_key=0, diff_range=(1, 5),
                 order_key=1, description="pg_stat_user_indexes, pg_statio_user_indexes",
                 columns=("index", "idx_scan", "idx_tup_read", "idx_tup_fetch", "idx_blks_read", "idx_blks_hit")),
        ViewSpec("replication", queries.PG_STAT_REPLICATION, unique_key=0, diff_range=(0, 0),
                 order_key=0, description="pg_stat_replication",
                 columns=("pid", "client", "user", "name", "state", "mode", "pending,KiB", "write,KiB",
                          "flush,KiB", "replay,KiB", "replay_lag")),
        ViewSpec("sizes", queries.PG_TABLES_SIZES, unique_key=0, diff_range=(4, 6),
                 order_key=1, description="table and index sizes",
                 columns=("relation", "total_bytes", "rel_bytes", "idx_bytes", "total_change",
                          "rel_change", "idx_change")),
        ViewSpec("statements_io", queries.PG_STAT_STATEMENTS_IO, unique_key=0, diff_range=(3, 7),
                 order_key=4, min_version=PG_V13, description="pg_stat_statements shared buffers io",
                 columns=("queryid", "user", "database", "calls", "hit", "read", "dirtied", "written", "query")),
        ViewSpec("statements_timings", queries.PG_STAT_STATEMENTS_TIMINGS, unique_key=0, diff_range=(3, 6),
                 order_key=4, min_version=PG_V13, description="pg_stat_statements timings",
                 columns=("queryid", "user", "database", "calls", "exec_t", "plan_t", "rows", "query")),
        ViewSpec("tables", queries.PG_STAT_TABLES, unique_key=0, diff_range=(1, 8),
                 order_key=1, description="pg_stat_user_tables",
                 columns=("relation", "seq_scan", "seq_tup_read", "idx_scan", "idx_tup_fetch", "inserted",
                          "updated", "deleted", "hot_updated", "live", "dead")),
        ViewSpec("wal", queries.PG_STAT_WAL, unique_key=0, diff_range=(1, 4),
                 order_key=1, min_version=PG_V14, description="pg_stat_wal",
                 columns=("scope", "records", "fpi", "bytes", "buffers_full", "stats_age")),
    ])


def prepare_views(
    views: ViewRegistry,
    *,
    version: int,
    pgss_schema: str,
    string_limit: int = 0,
) -> ViewRegistry:
    """Filter views for the running server and render their queries."""
    _, supported = views.filter_supported(version, pgss_schema)
    return supported.configure(QueryOptions(string_limit=string_limit, pgss_schema=pgss_schema))
