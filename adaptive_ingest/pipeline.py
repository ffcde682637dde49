from collections.abc import Sequence
import logging

from adaptive_ingest.analysis import analyze_upload
from adaptive_ingest.catalog import is_fixed_relation
from adaptive_ingest.config import Capabilities, Settings
from adaptive_ingest.diagnostics import MALFORMED_DEFINITION, SCHEMA_CACHE_STALE, classify
from adaptive_ingest.errors import CapabilityError, IngestError, LoadError, MaterializationError
from adaptive_ingest.inference import InferenceService, infer_schema
from adaptive_ingest.loader import load
from adaptive_ingest.materialize import materialize, sanitize_definition, strip_punctuation
from adaptive_ingest.projection import project, restrict_records
from adaptive_ingest.retry import run_with_recovery
from adaptive_ingest.run_state import (
    EventSink,
    mark_creating_relation,
    mark_failed,
    mark_inferring,
    mark_loading,
    mark_succeeded,
)
from adaptive_ingest.schemas import IngestionRun, LoadReport, NormalizedRecord, RawRow, ResolvedRelation, SchemaMapping
from adaptive_ingest.store import SqlStore


logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Runs one upload through inference, projection, materialization and loading.

    Stages are strictly ordered; each run owns its own ``IngestionRun`` so
    concurrent uploads share nothing but the store.
    """

    def __init__(
        self,
        settings: Settings,
        store: SqlStore,
        service: InferenceService,
        *,
        capabilities: Capabilities | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.service = service
        self.capabilities = capabilities or Capabilities.from_settings(settings)

    def run(self, rows: Sequence[RawRow], *, on_event: EventSink | None = None) -> IngestionRun:
        run = IngestionRun(records_total=len(rows))

        try:
            self._require_capabilities()

            mark_inferring(run, on_event)
            mapping = infer_schema(
                rows,
                self.service,
                catalog_mode=self.settings.catalog_mode,
                sample_size=self.settings.sample_size,
            )
            run.mapping = mapping
            run.records = project(rows, mapping)

            relation = self._resolve_relation(run, mapping, on_event)
            run.relation = relation
            run.records = restrict_records(run.records, relation.fields)

            self._load(run, run.records, relation, on_event)
        except IngestError as exc:
            classified = classify(exc)
            logger.error(
                "ingestion run failed",
                extra={"kind": classified.kind, "committed": run.records_loaded, "total": run.records_total},
            )
            mark_failed(run, str(exc), classified, on_event)
            return run
        except Exception as exc:
            classified = classify(exc)
            logger.exception("ingestion run failed unexpectedly", extra={"committed": run.records_loaded})
            mark_failed(run, str(exc), classified, on_event)
            return run

        mark_succeeded(run, on_event)
        logger.info(
            "ingestion run succeeded",
            extra={"relation": run.relation.name, "records": run.records_loaded},
        )

        if self.settings.analyze_after_load:
            run.analysis = analyze_upload(run.records, mapping, self.service)
        return run

    def _require_capabilities(self) -> None:
        if not self.capabilities.can_infer:
            raise CapabilityError("inference service credentials are not configured")

    def _resolve_relation(
        self,
        run: IngestionRun,
        mapping: SchemaMapping,
        on_event: EventSink | None,
    ) -> ResolvedRelation:
        if is_fixed_relation(mapping.target_relation):
            return materialize(mapping, self.store)

        mark_creating_relation(run, mapping.target_relation, on_event)

        def attempt_create(attempt: int) -> ResolvedRelation:
            # Second attempt re-sanitizes the generated definition more aggressively.
            sanitizer = sanitize_definition if attempt == 1 else strip_punctuation
            return materialize(mapping, self.store, sanitizer=sanitizer)

        return run_with_recovery(
            attempt_create,
            max_retries=self.settings.max_recovery_retries,
            backoff_seconds=self.settings.retry_backoff_seconds,
            should_retry=lambda exc: isinstance(exc, MaterializationError)
            and classify(exc).kind == MALFORMED_DEFINITION,
            on_attempt_failure=self._log_recovery("materialize"),
        )

    def _load(
        self,
        run: IngestionRun,
        records: Sequence[NormalizedRecord],
        relation: ResolvedRelation,
        on_event: EventSink | None,
    ) -> LoadReport:
        mark_loading(run, 0, len(records), on_event)

        def attempt_load(attempt: int) -> LoadReport:
            recovering = attempt > 1
            if recovering:
                # Resume past the committed batches on the raw channel.
                self.store.refresh_schema_cache()
            report = load(
                records,
                relation,
                self.store,
                batch_size=self.settings.batch_size,
                on_progress=lambda committed, total: mark_loading(run, committed, total, on_event),
                start_index=run.records_loaded if recovering else 0,
                force_raw=recovering,
            )
            run.records_loaded = report.committed
            if not report.succeeded:
                raise LoadError(
                    report.error or "batch load failed",
                    committed=report.committed,
                    total=report.total,
                    failed_at_index=report.failed_at_index or 0,
                )
            return report

        return run_with_recovery(
            attempt_load,
            max_retries=self.settings.max_recovery_retries,
            backoff_seconds=self.settings.retry_backoff_seconds,
            should_retry=lambda exc: isinstance(exc, LoadError) and classify(exc).kind == SCHEMA_CACHE_STALE,
            on_attempt_failure=self._log_recovery("load"),
        )

    @staticmethod
    def _log_recovery(stage: str):
        def log_failure(attempt: int, exc: IngestError) -> None:
            logger.warning(
                "stage attempt failed",
                extra={"stage": stage, "attempt": attempt, "kind": classify(exc).kind},
            )

        return log_failure
