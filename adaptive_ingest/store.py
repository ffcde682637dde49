from collections.abc import Iterable, Sequence
import logging

from sqlalchemy import Engine, MetaData, Table, insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from adaptive_ingest.errors import StoreError


logger = logging.getLogger(__name__)


def _driver_message(exc: SQLAlchemyError) -> str:
    # The wrapped message echoes the statement; keep only the driver text.
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


class SqlStore:
    """Persistent store with a structured insert path and a privileged raw channel.

    Structured inserts resolve relations through a client-side schema cache that
    is only filled on construction or an explicit refresh, so a relation created
    through ``execute_raw`` is invisible to ``insert_rows`` until then.
    """

    def __init__(self, engine: Engine, *, writable_relations: Iterable[str] = ()) -> None:
        self.engine = engine
        self.writable_relations = frozenset(writable_relations)
        self._schema_cache: dict[str, Table] = {}
        self.refresh_schema_cache()

    def refresh_schema_cache(self) -> None:
        metadata = MetaData()
        metadata.reflect(bind=self.engine)
        self._schema_cache = dict(metadata.tables)
        logger.debug("schema cache refreshed", extra={"relations": sorted(self._schema_cache)})

    def check_write_policy(self, relation: str) -> None:
        # Empty policy set means every relation accepts writes.
        if self.writable_relations and relation not in self.writable_relations:
            raise StoreError(f'new row violates row-level security policy for table "{relation}"')

    def insert_rows(self, relation: str, rows: Sequence[dict[str, object]]) -> None:
        self.check_write_policy(relation)
        table = self._schema_cache.get(relation)
        if table is None:
            raise StoreError(f"Could not find the table 'public.{relation}' in the schema cache")
        if not rows:
            return

        try:
            with self.engine.begin() as conn:
                conn.execute(insert(table), list(rows))
        except SQLAlchemyError as exc:
            raise StoreError(_driver_message(exc)) from exc

    def execute_raw(self, statement: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.exec_driver_sql(statement)
        except SQLAlchemyError as exc:
            raise StoreError(_driver_message(exc)) from exc
