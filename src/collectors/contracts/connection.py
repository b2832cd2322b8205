from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple

RawRow = Tuple[Optional[str], ...]


class Connection(Protocol):
    """
    Connection contract consumed by the sampling loop.

    A Connection is responsible ONLY for:
        - running one query
        - returning column names and rows with every value as its text
          (None for NULL)

    It MUST NOT:
        - import statmon internals beyond statmon.exceptions and
          statmon.utils (errors and logging only)
        - diff, sort or persist anything

    Failures raise SamplingError with the server's message.
    """

    def fetch(self, query: str) -> Tuple[List[str], Sequence[RawRow]]:
        ...

    def close(self) -> None:
        ...
