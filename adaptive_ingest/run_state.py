from collections.abc import Callable

from adaptive_ingest.schemas import ClassifiedError, IngestionRun, ProgressEvent


EventSink = Callable[[ProgressEvent], None]

INFERRING = "inferring"
CREATING_RELATION = "creating-relation"
LOADING = "loading"
SUCCEEDED = "succeeded"
FAILED = "failed"


def _emit(run: IngestionRun, event: ProgressEvent, sink: EventSink | None) -> None:
    run.events.append(event)
    if sink:
        sink(event)


def mark_inferring(run: IngestionRun, sink: EventSink | None = None) -> None:
    run.status = INFERRING
    _emit(run, ProgressEvent(status=INFERRING, message="analysing file structure"), sink)


def mark_creating_relation(run: IngestionRun, relation_name: str, sink: EventSink | None = None) -> None:
    run.status = CREATING_RELATION
    _emit(run, ProgressEvent(status=CREATING_RELATION, message=f"creating relation for {relation_name}"), sink)


def mark_loading(run: IngestionRun, committed: int, total: int, sink: EventSink | None = None) -> None:
    run.status = LOADING
    run.records_loaded = committed
    run.records_total = total
    _emit(
        run,
        ProgressEvent(status=LOADING, message=f"loaded {committed} of {total} records", committed=committed, total=total),
        sink,
    )


def mark_succeeded(run: IngestionRun, sink: EventSink | None = None) -> None:
    run.status = SUCCEEDED
    run.reason = None
    run.error = None
    _emit(
        run,
        ProgressEvent(
            status=SUCCEEDED,
            message=f"loaded {run.records_loaded} records into {run.relation.name if run.relation else 'store'}",
            committed=run.records_loaded,
            total=run.records_total,
        ),
        sink,
    )


def mark_failed(run: IngestionRun, reason: str, error: ClassifiedError, sink: EventSink | None = None) -> None:
    run.status = FAILED
    run.reason = reason
    run.error = error
    message = error.user_message
    if run.records_loaded:
        message = f"{message} ({run.records_loaded} of {run.records_total} records were committed)"
    _emit(
        run,
        ProgressEvent(
            status=FAILED,
            message=message,
            committed=run.records_loaded,
            total=run.records_total,
            error=error,
        ),
        sink,
    )
