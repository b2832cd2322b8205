from __future__ import annotations

from dataclasses import dataclass

from collectors.contracts.connection import Connection
from statmon.exceptions.core import SamplingError

_PROPERTIES_QUERY = (
    "SELECT current_setting('server_version'), "
    "current_setting('server_version_num'), "
    "pg_is_in_recovery(), "
    "current_setting('track_commit_timestamp'), "
    "date_trunc('seconds', pg_postmaster_start_time())::text"
)

_EXTENSION_SCHEMA_QUERY = (
    "SELECT n.nspname FROM pg_extension e "
    "JOIN pg_namespace n ON n.oid = e.extnamespace "
    "WHERE e.extname = '{name}'"
)


@dataclass(frozen=True)
class PostgresProperties:
    version: str
    version_num: int
    recovery: str
    track_commit_timestamp: str
    start_time: str
    pgss_schema: str

    @property
    def in_recovery(self) -> bool:
        return self.recovery == "t"


def extension_schema(conn: Connection, name: str) -> str:
    """Schema an extension is installed in, or "" when it is not installed."""
    _, rows = conn.fetch(_EXTENSION_SCHEMA_QUERY.format(name=name.replace("'", "''")))
    if not rows or rows[0][0] is None:
        return ""
    return rows[0][0]


def get_postgres_properties(conn: Connection) -> PostgresProperties:
    _, rows = conn.fetch(_PROPERTIES_QUERY)
    if len(rows) != 1 or len(rows[0]) != 5:
        raise SamplingError("unexpected server properties result")
    version, version_num, recovery, track, start_time = rows[0]
    try:
        num = int(version_num or "")
    except ValueError as exc:
        raise SamplingError(f"invalid server_version_num: {version_num!r}") from exc

    return PostgresProperties(
        version=version or "",
        version_num=num,
        recovery=recovery or "",
        track_commit_timestamp=track or "",
        start_time=start_time or "",
        pgss_schema=extension_schema(conn, "pg_stat_statements"),
    )
