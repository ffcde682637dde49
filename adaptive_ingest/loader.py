from collections.abc import Callable, Sequence
from decimal import Decimal
import logging
import math

from adaptive_ingest.errors import StoreError
from adaptive_ingest.schemas import LoadReport, LoadStatus, NormalizedRecord, ResolvedRelation
from adaptive_ingest.store import SqlStore


logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100

ProgressCallback = Callable[[int, int], None]


def escape_value(value: object) -> str:
    """Render a value as a SQL literal; not suitable for identifiers."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "NULL"
        return repr(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def build_insert_statement(relation_name: str, records: Sequence[NormalizedRecord]) -> str:
    columns: list[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)

    values = ",\n".join(
        "(" + ", ".join(escape_value(record.get(column)) for column in columns) + ")" for record in records
    )
    return f"INSERT INTO {relation_name} ({', '.join(columns)}) VALUES\n{values}"


def load(
    records: Sequence[NormalizedRecord],
    relation: ResolvedRelation,
    store: SqlStore,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
    start_index: int = 0,
    force_raw: bool = False,
) -> LoadReport:
    """Insert records in consecutive batches, stopping at the first failing batch.

    ``start_index`` resumes a previous partial load; records before it count as
    already committed. Minted relations always go through the raw channel because
    the store's schema cache cannot see them yet.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    total = len(records)
    committed = start_index
    batches = 0
    use_raw = force_raw or not relation.fixed

    for offset in range(start_index, total, batch_size):
        batch = list(records[offset : offset + batch_size])
        try:
            if use_raw:
                store.execute_raw(build_insert_statement(relation.name, batch))
            else:
                store.insert_rows(relation.name, batch)
        except StoreError as exc:
            logger.error(
                "batch load failed",
                extra={"relation": relation.name, "failed_at_index": offset, "committed": committed},
            )
            return LoadReport(
                status=LoadStatus.FAILED,
                committed=committed,
                total=total,
                batches=batches,
                failed_at_index=offset,
                error=str(exc),
            )

        committed += len(batch)
        batches += 1
        if on_progress:
            on_progress(committed, total)

    return LoadReport(status=LoadStatus.SUCCEEDED, committed=committed, total=total, batches=batches)
