"""Turn failure signals into actionable diagnostic categories.

The store does not expose typed error codes at this layer, so classification
matches on the error text. ``classify`` performs no I/O and never raises.
"""

from adaptive_ingest.errors import LoadError, MaterializationError, SchemaInferenceError, redact_statement
from adaptive_ingest.schemas import ClassifiedError


ACCESS_POLICY_DENIED = "AccessPolicyDenied"
SCHEMA_CACHE_STALE = "SchemaCacheStale"
MALFORMED_DEFINITION = "MalformedDefinition"
UNKNOWN = "Unknown"

_ACCESS_POLICY_MARKERS = ("row-level security", "row level security")
_SCHEMA_CACHE_MARKERS = ("schema cache", "pgrst204", "pgrst205")
_MALFORMED_MARKERS = ("syntax error", "unrecognized token", "malformed")


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def classify(error: BaseException | str | None) -> ClassifiedError:
    message = "" if error is None else str(error)

    # Inference service rejections are surfaced as-is.
    if isinstance(error, SchemaInferenceError):
        return ClassifiedError(kind=UNKNOWN, user_message=message or "schema inference failed")

    lowered = message.lower()
    if _contains_any(lowered, _ACCESS_POLICY_MARKERS):
        return ClassifiedError(
            kind=ACCESS_POLICY_DENIED,
            user_message="The store's row-level access policy rejected the write.",
            remediation_hint="Grant write access (an insert policy) on the target relation, then upload again.",
        )

    if _contains_any(lowered, _SCHEMA_CACHE_MARKERS):
        return ClassifiedError(
            kind=SCHEMA_CACHE_STALE,
            user_message="The store has not picked up the newly created relation yet.",
            remediation_hint="Load through the raw execution path, or wait briefly and retry once.",
        )

    if _contains_any(lowered, _MALFORMED_MARKERS):
        hint = "Strip punctuation from the generated column definition and retry once."
        if isinstance(error, MaterializationError) and error.definition:
            hint += f" If it fails again, correct the definition manually: {redact_statement(error.definition)}"
        return ClassifiedError(
            kind=MALFORMED_DEFINITION,
            user_message="The generated relation definition was rejected by the store.",
            remediation_hint=hint,
        )

    if isinstance(error, LoadError):
        message = f"{message} ({error.committed} of {error.total} records committed)"
    return ClassifiedError(kind=UNKNOWN, user_message=message or "unknown failure")
