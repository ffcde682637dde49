from adaptive_ingest.diagnostics import (
    ACCESS_POLICY_DENIED,
    MALFORMED_DEFINITION,
    SCHEMA_CACHE_STALE,
    UNKNOWN,
    classify,
)
from adaptive_ingest.errors import LoadError, MaterializationError, SchemaInferenceError, StoreError


def test_row_level_security_rejection_is_access_policy_denied() -> None:
    classified = classify(StoreError('new row violates row-level security policy for table "local_policies"'))

    assert classified.kind == ACCESS_POLICY_DENIED
    assert classified.remediation_hint


def test_schema_cache_miss_is_stale_cache() -> None:
    classified = classify("Could not find the table 'public.clinics_1' in the schema cache")

    assert classified.kind == SCHEMA_CACHE_STALE
    assert "raw" in classified.remediation_hint


def test_syntax_error_in_definition_is_malformed_and_keeps_fragment_redacted() -> None:
    error = MaterializationError(
        '(sqlite3.OperationalError) near ",": syntax error',
        statement="CREATE TABLE IF NOT EXISTS x_1 (a text DEFAULT, b text)",
        definition="a text DEFAULT, b text",
    )

    classified = classify(error)

    assert classified.kind == MALFORMED_DEFINITION
    assert "[generated-ddl]a text DEFAULT, b text[/generated-ddl]" in classified.remediation_hint
    assert "CREATE TABLE" not in classified.user_message


def test_unknown_errors_are_verbatim_without_hint() -> None:
    classified = classify(RuntimeError("disk I/O error"))

    assert classified.kind == UNKNOWN
    assert classified.user_message == "disk I/O error"
    assert classified.remediation_hint is None


def test_inference_rejections_are_not_reclassified() -> None:
    classified = classify(SchemaInferenceError("permission denied: row-level security quota"))

    assert classified.kind == UNKNOWN
    assert classified.user_message == "permission denied: row-level security quota"


def test_unknown_load_error_mentions_committed_count() -> None:
    classified = classify(LoadError("constraint failed", committed=200, total=350, failed_at_index=200))

    assert classified.kind == UNKNOWN
    assert "200 of 350" in classified.user_message


def test_classify_handles_missing_error() -> None:
    assert classify(None).kind == UNKNOWN


def test_unknown_materialization_failure_shows_statement_only_inside_markers() -> None:
    error = MaterializationError(
        "duplicate column name: clinic_name",
        statement="CREATE TABLE IF NOT EXISTS clinics_1 (clinic_name text, clinic_name integer)",
    )

    classified = classify(error)

    assert classified.kind == UNKNOWN
    assert classified.user_message.startswith("duplicate column name: clinic_name (statement: [generated-ddl]CREATE")
    assert classified.user_message.endswith("[/generated-ddl])")
    assert classified.user_message.count("CREATE TABLE") == 1
