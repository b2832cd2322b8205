from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import psycopg

from collectors.contracts.connection import RawRow
from statmon.exceptions.core import SamplingError
from statmon.utils.logger import get_logger, log_debug, log_error

_logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionConfig:
    """Unset fields fall back to libpq defaults and PG* environment variables."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    dbname: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = 10
    application_name: str = "statmon"

    def kwargs(self) -> dict:
        out = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "dbname": self.dbname,
            "password": self.password,
        }
        out = {k: v for k, v in out.items() if v is not None}
        out["connect_timeout"] = self.connect_timeout
        out["application_name"] = self.application_name
        return out


def rows_from_pgresult(res, encoding: str) -> Tuple[List[str], List[RawRow]]:
    """Read column names and raw text values out of a libpq result."""
    if res is None:
        return [], []
    columns = [(res.fname(i) or b"").decode(encoding) for i in range(res.nfields)]
    rows: List[RawRow] = []
    for r in range(res.ntuples):
        row = []
        for c in range(res.nfields):
            value = res.get_value(r, c)
            row.append(None if value is None else bytes(value).decode(encoding))
        rows.append(tuple(row))
    return columns, rows


class PostgresConnection:
    """
    psycopg-backed Connection.

    Values are taken straight from the text-format libpq result, so every
    cell keeps the exact representation the server sent.
    """

    def __init__(self, config: ConnectionConfig = ConnectionConfig()):
        self.config = config
        try:
            self._conn = psycopg.connect(autocommit=True, **config.kwargs())
        except psycopg.Error as exc:
            log_error(_logger, "sampling.connect_failed", host=config.host, dbname=config.dbname, err=str(exc))
            raise SamplingError(f"cannot connect: {exc}") from exc
        log_debug(_logger, "sampling.connected", host=config.host, dbname=config.dbname)

    def fetch(self, query: str) -> Tuple[List[str], Sequence[RawRow]]:
        try:
            with self._conn.cursor() as cur:
                cur.execute(query)
                return rows_from_pgresult(cur.pgresult, self._conn.info.encoding)
        except psycopg.Error as exc:
            log_error(_logger, "sampling.query_failed", err=str(exc))
            raise SamplingError(f"query failed: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "PostgresConnection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
