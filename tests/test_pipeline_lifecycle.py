from dataclasses import replace

from sqlalchemy import create_engine, select, text

from adaptive_ingest.config import Capabilities
from adaptive_ingest.db_models import Base, ForeignResidentStat
from adaptive_ingest.diagnostics import ACCESS_POLICY_DENIED, MALFORMED_DEFINITION, UNKNOWN
from adaptive_ingest.pipeline import IngestionPipeline
from adaptive_ingest.store import SqlStore
from conftest import FakeInferenceService


UPLOAD = [
    {"지역": "서울", "인원": "1,234", "국적": "중국"},
    {"지역": "부산", "인원": "3만", "국적": "베트남"},
    {"지역": "", "인원": "12", "국적": "필리핀"},
    {"지역": "대구", "인원": "없음", "국적": None},
    {"지역": "인천", "인원": "7", "국적": "태국"},
]

CLINIC_MAPPING = {
    "datasetName": "병원 목록",
    "targetRelation": "clinics",
    "fieldMappings": [
        {"sourceLabel": "이름", "targetField": "clinic_name", "valueKind": "string"},
        {"sourceLabel": "병상", "targetField": "beds", "valueKind": "number"},
    ],
    "relationDefinition": "(clinic_name text, beds numeric,);",
}

CLINICS = [{"이름": "하나의원", "병상": "12"}, {"이름": "두리병원", "병상": "1,200"}, {"이름": "세움", "병상": ""}]


def test_fixed_catalog_upload_succeeds_with_progress(make_pipeline, engine, resident_mapping) -> None:
    events = []
    pipeline = make_pipeline(FakeInferenceService(resident_mapping))

    run = pipeline.run(UPLOAD, on_event=events.append)

    assert run.status == "succeeded"
    assert run.records_loaded == 5
    assert run.records_total == 5
    assert run.relation.name == "foreign_residents_stats"
    assert [event.status for event in events] == ["inferring", "loading", "loading", "loading", "loading", "succeeded"]
    assert [event.committed for event in events if event.status == "loading"] == [0, 2, 4, 5]

    with engine.connect() as conn:
        rows = conn.execute(
            select(ForeignResidentStat.region, ForeignResidentStat.resident_count).order_by(ForeignResidentStat.id)
        ).all()
    assert rows[0] == ("서울", 1234)
    assert rows[1] == ("부산", 30000)
    assert rows[2] == ("미분류", 12)
    assert rows[3] == ("대구", 0)


def test_open_mode_mints_relation_and_loads_raw(make_pipeline, test_settings, engine) -> None:
    events = []
    settings = replace(test_settings, catalog_mode="open")
    pipeline = make_pipeline(FakeInferenceService(CLINIC_MAPPING), settings=settings)

    run = pipeline.run(CLINICS, on_event=events.append)

    assert run.status == "succeeded", run.reason
    assert run.relation.created is True
    assert run.relation.name.startswith("clinics_")
    assert "creating-relation" in [event.status for event in events]
    with engine.connect() as conn:
        beds = conn.execute(text(f"SELECT beds FROM {run.relation.name} ORDER BY beds")).scalars().all()
    assert beds == [0, 12, 1200]


def test_malformed_definition_is_retried_once_with_stripped_punctuation(make_pipeline, test_settings, engine) -> None:
    mapping = dict(CLINIC_MAPPING, relationDefinition="clinic_name text, beds numeric!!")
    pipeline = make_pipeline(FakeInferenceService(mapping), settings=replace(test_settings, catalog_mode="open"))

    run = pipeline.run(CLINICS)

    assert run.status == "succeeded", run.reason
    with engine.connect() as conn:
        assert conn.execute(text(f"SELECT COUNT(*) FROM {run.relation.name}")).scalar_one() == 3


def test_malformed_definition_that_cannot_be_repaired_fails_the_run(make_pipeline, test_settings) -> None:
    mapping = dict(CLINIC_MAPPING, relationDefinition="clinic_name text DEFAULT, beds numeric")
    pipeline = make_pipeline(FakeInferenceService(mapping), settings=replace(test_settings, catalog_mode="open"))

    run = pipeline.run(CLINICS)

    assert run.status == "failed"
    assert run.error.kind == MALFORMED_DEFINITION
    assert run.records_loaded == 0
    assert "[generated-ddl]" in run.error.remediation_hint


def test_access_policy_rejection_is_classified(make_pipeline, engine, resident_mapping) -> None:
    guarded = SqlStore(engine, writable_relations=["local_policies"])
    pipeline = make_pipeline(FakeInferenceService(resident_mapping), pipeline_store=guarded)

    run = pipeline.run(UPLOAD)

    assert run.status == "failed"
    assert run.error.kind == ACCESS_POLICY_DENIED
    assert run.error.remediation_hint
    assert run.records_loaded == 0


def test_stale_schema_cache_resumes_on_raw_path(make_pipeline, tmp_path, resident_mapping) -> None:
    bare_engine = create_engine(f"sqlite:///{tmp_path / 'stale.db'}", future=True)
    stale_store = SqlStore(bare_engine)
    # Created after the store filled its cache.
    Base.metadata.create_all(bare_engine)
    pipeline = make_pipeline(FakeInferenceService(resident_mapping), pipeline_store=stale_store)

    run = pipeline.run(UPLOAD)

    assert run.status == "succeeded", run.reason
    with bare_engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM foreign_residents_stats")).scalar_one() == 5


def test_partial_load_reports_committed_records(make_pipeline, engine, resident_mapping) -> None:
    resident_mapping["fieldMappings"][2]["targetField"] = "visa_type"
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TRIGGER reject_bad_visa BEFORE INSERT ON foreign_residents_stats "
                "WHEN NEW.visa_type = '필리핀' BEGIN SELECT RAISE(ABORT, 'visa type rejected'); END"
            )
        )
    events = []
    pipeline = make_pipeline(FakeInferenceService(resident_mapping))

    run = pipeline.run(UPLOAD, on_event=events.append)

    assert run.status == "failed"
    assert run.records_loaded == 2
    assert run.error.kind == UNKNOWN
    assert "visa type rejected" in run.error.user_message
    assert "2 of 5 records were committed" in events[-1].message


def test_inference_failure_is_fatal_before_any_write(make_pipeline, engine) -> None:
    pipeline = make_pipeline(FakeInferenceService(RuntimeError("401 Unauthorized")))

    run = pipeline.run(UPLOAD)

    assert run.status == "failed"
    assert run.error.user_message == "401 Unauthorized"
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM foreign_residents_stats")).scalar_one() == 0


def test_missing_credentials_fail_at_entry(test_settings, store, resident_mapping) -> None:
    service = FakeInferenceService(resident_mapping)
    pipeline = IngestionPipeline(
        test_settings, store, service, capabilities=Capabilities(can_infer=False)
    )

    run = pipeline.run(UPLOAD)

    assert run.status == "failed"
    assert "credentials" in run.reason
    assert service.prompts == []


def test_analysis_runs_after_successful_load(make_pipeline, test_settings, resident_mapping) -> None:
    analysis_payload = {
        "insights": [{"title": "수도권 집중", "content": "서울에 가장 많다", "type": "trend"}],
        "recommendations": [{"id": "r1", "title": "국적별 분포", "description": "...", "icon": "fa-solid fa-globe"}],
    }
    service = FakeInferenceService(resident_mapping, analysis_payload)
    pipeline = make_pipeline(service, settings=replace(test_settings, analyze_after_load=True))

    run = pipeline.run(UPLOAD)

    assert run.status == "succeeded"
    assert run.analysis.insights[0].title == "수도권 집중"
    assert run.analysis.recommendations[0].icon == "fa-solid fa-globe"


def test_unexpected_service_exception_still_ends_in_failed_run(make_pipeline) -> None:
    events = []
    pipeline = make_pipeline(FakeInferenceService(ValueError("bad payload from provider")))

    run = pipeline.run(UPLOAD, on_event=events.append)

    assert run.status == "failed"
    assert run.error.kind == UNKNOWN
    assert run.error.user_message == "bad payload from provider"
    assert events[-1].status == "failed"


def test_unrecognized_creation_failure_keeps_statement_redacted(make_pipeline, test_settings) -> None:
    mapping = dict(CLINIC_MAPPING, relationDefinition="id text primary key autoincrement, clinic_name text")
    pipeline = make_pipeline(FakeInferenceService(mapping), settings=replace(test_settings, catalog_mode="open"))

    run = pipeline.run(CLINICS)

    assert run.status == "failed"
    assert run.error.kind == UNKNOWN
    assert run.records_loaded == 0
    message = run.error.user_message
    assert "AUTOINCREMENT" in message
    assert "[SQL:" not in message
    before, marker, rest = message.partition("[generated-ddl]")
    assert marker
    assert "CREATE TABLE" not in before
    assert "CREATE TABLE" not in rest.partition("[/generated-ddl]")[2]


def test_invalid_batch_size_ends_in_failed_run(make_pipeline, test_settings, resident_mapping) -> None:
    pipeline = make_pipeline(FakeInferenceService(resident_mapping), settings=replace(test_settings, batch_size=0))

    run = pipeline.run(UPLOAD)

    assert run.status == "failed"
    assert "batch_size" in run.reason
