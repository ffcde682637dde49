"""Schema inference through an external reasoning service.

The service is treated as an untrusted data producer: whatever it returns is
validated against a closed contract before any other stage sees it.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol

from openai import OpenAI

from adaptive_ingest.catalog import (
    FIXED_RELATIONS,
    IDENTIFIER_RE,
    allowed_target_fields,
    parse_definition_fields,
    split_definition,
)
from adaptive_ingest.config import MAX_SAMPLE_SIZE
from adaptive_ingest.errors import SchemaInferenceError, ValidationError
from adaptive_ingest.materialize import sanitize_definition
from adaptive_ingest.schemas import VALUE_KINDS, FieldMapping, RawRow, SchemaMapping


logger = logging.getLogger(__name__)

FIXED_MODE = "fixed"
OPEN_MODE = "open"

_FORBIDDEN_DEFINITION_TOKENS = (";", "--", "/*", "*/")


class InferenceService(Protocol):
    def generate_json(self, prompt: str, response_schema: dict[str, Any]) -> dict[str, Any]:
        ...


class OpenAIInferenceService:
    """JSON-mode chat completion client for the reasoning service."""

    def __init__(self, api_key: str, *, model: str = "gpt-4o-mini", client: Any = None) -> None:
        self.model = model
        self.client = client or OpenAI(api_key=api_key)

    def generate_json(self, prompt: str, response_schema: dict[str, Any]) -> dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[
                {
                    "role": "system",
                    "content": "Reply with a single JSON object matching this JSON schema:\n"
                    + json.dumps(response_schema, ensure_ascii=False),
                },
                {"role": "user", "content": prompt},
            ],
        )
        content = response.choices[0].message.content or "{}"
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as exc:
            raise SchemaInferenceError(f"inference service returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise SchemaInferenceError("inference service returned a non-object payload")
        return payload


def mapping_response_schema(catalog_mode: str) -> dict[str, Any]:
    target_field: dict[str, Any] = {"type": "string"}
    target_relation: dict[str, Any] = {"type": "string"}
    if catalog_mode == FIXED_MODE:
        target_field["enum"] = list(allowed_target_fields())
        target_relation["enum"] = list(FIXED_RELATIONS)

    return {
        "type": "object",
        "properties": {
            "datasetName": {"type": "string"},
            "targetRelation": target_relation,
            "fieldMappings": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "sourceLabel": {"type": "string"},
                        "targetField": target_field,
                        "valueKind": {"type": "string", "enum": list(VALUE_KINDS)},
                    },
                    "required": ["sourceLabel", "targetField", "valueKind"],
                },
            },
            "relationDefinition": {"type": "string"},
            "xAxisField": {"type": "string"},
            "yAxisField": {"type": "string"},
            "unit": {"type": "string"},
            "label": {"type": "string"},
        },
        "required": ["datasetName", "targetRelation", "fieldMappings"],
    }


def build_prompt(sample_rows: Sequence[RawRow], catalog_mode: str) -> str:
    rows_text = "\n".join(json.dumps(row, ensure_ascii=False, default=str) for row in sample_rows)
    lines = [
        "The following rows are a sample of an uploaded spreadsheet with unknown columns:",
        rows_text,
        "",
        "Infer how each source column maps onto a storage relation.",
        "Use valueKind 'number' for counts, amounts and budgets, 'date' for dates and 'string' otherwise.",
    ]
    if catalog_mode == FIXED_MODE:
        lines.append("targetRelation must be one of:")
        for relation in FIXED_RELATIONS.values():
            lines.append(f"- {relation.name}: {relation.description} ({', '.join(relation.mappable_fields)})")
        lines.append(
            "targetField must be one of these values and nothing else: " + ", ".join(allowed_target_fields())
        )
    else:
        lines.extend(
            [
                "targetRelation may name one of the existing relations below or a new snake_case name:",
                *(f"- {name}" for name in FIXED_RELATIONS),
                "For a new relation, targetField values must be lowercase snake_case identifiers and",
                "relationDefinition must list the columns as 'name type' pairs separated by commas,",
                "without surrounding parentheses, trailing commas or semicolons.",
            ]
        )
    return "\n".join(lines)


def _optional_text(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_field_mappings(raw_mappings: Any) -> tuple[FieldMapping, ...]:
    if not isinstance(raw_mappings, list) or not raw_mappings:
        raise SchemaInferenceError("inferred mapping has no fieldMappings")

    mappings: list[FieldMapping] = []
    seen: set[str] = set()
    for entry in raw_mappings:
        if not isinstance(entry, dict):
            raise SchemaInferenceError(f"fieldMappings entry is not an object: {entry!r}")
        target_field = str(entry.get("targetField") or "").strip()
        if not target_field:
            raise SchemaInferenceError(f"fieldMappings entry is missing targetField: {entry!r}")
        if target_field in seen:
            raise SchemaInferenceError(f"duplicate targetField in fieldMappings: {target_field}")
        seen.add(target_field)

        value_kind = str(entry.get("valueKind") or "string").strip().lower()
        if value_kind not in VALUE_KINDS:
            value_kind = "string"
        source_label = str(entry.get("sourceLabel") or target_field)
        mappings.append(FieldMapping(source_label=source_label, target_field=target_field, value_kind=value_kind))
    return tuple(mappings)


def _validate_definition(definition: str) -> None:
    for token in _FORBIDDEN_DEFINITION_TOKENS:
        if token in definition:
            raise SchemaInferenceError(f"relationDefinition contains forbidden token {token!r}")

    depth = 0
    for char in definition:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if depth < 0:
            break
    if depth != 0:
        raise SchemaInferenceError("relationDefinition has unbalanced brackets")

    for part in split_definition(definition):
        pieces = part.split()
        if len(pieces) < 2 or not IDENTIFIER_RE.match(pieces[0].lower()):
            raise SchemaInferenceError(f"relationDefinition entry is not a 'name type' pair: {part!r}")

    names = parse_definition_fields(definition)
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise SchemaInferenceError(f"relationDefinition repeats column names: {', '.join(duplicates)}")


def parse_mapping(payload: dict[str, Any], *, catalog_mode: str) -> SchemaMapping:
    dataset_name = _optional_text(payload, "datasetName")
    if not dataset_name:
        raise SchemaInferenceError("inferred mapping is missing datasetName")

    field_mappings = _parse_field_mappings(payload.get("fieldMappings"))
    target_relation = _optional_text(payload, "targetRelation") or dataset_name
    definition = _optional_text(payload, "relationDefinition")

    if catalog_mode == FIXED_MODE:
        if target_relation not in FIXED_RELATIONS:
            raise ValidationError(f"targetRelation {target_relation!r} is not in the relation catalog")
        allowed = set(allowed_target_fields())
        unknown = [fm.target_field for fm in field_mappings if fm.target_field not in allowed]
        if unknown:
            raise ValidationError(f"targetField values outside the allowed set: {', '.join(unknown)}")
        definition = None
    elif target_relation in FIXED_RELATIONS:
        definition = None
    else:
        invalid = [fm.target_field for fm in field_mappings if not IDENTIFIER_RE.match(fm.target_field)]
        if invalid:
            raise SchemaInferenceError(f"targetField values are not identifier-safe: {', '.join(invalid)}")
        if definition is not None:
            definition = sanitize_definition(definition)
            _validate_definition(definition)

    return SchemaMapping(
        dataset_name=dataset_name,
        target_relation=target_relation,
        field_mappings=field_mappings,
        relation_definition=definition or None,
        x_axis_field=_optional_text(payload, "xAxisField"),
        y_axis_field=_optional_text(payload, "yAxisField"),
        unit=_optional_text(payload, "unit"),
        label=_optional_text(payload, "label"),
    )


def infer_schema(
    sample_rows: Sequence[RawRow],
    service: InferenceService,
    *,
    catalog_mode: str = FIXED_MODE,
    sample_size: int = 5,
) -> SchemaMapping:
    if not sample_rows:
        raise SchemaInferenceError("cannot infer a schema from an empty upload")

    sample = list(sample_rows[: max(1, min(sample_size, MAX_SAMPLE_SIZE))])
    prompt = build_prompt(sample, catalog_mode)
    try:
        payload = service.generate_json(prompt, mapping_response_schema(catalog_mode))
    except SchemaInferenceError:
        raise
    except Exception as exc:
        # Any provider or transport failure ends inference.
        raise SchemaInferenceError(str(exc)) from exc
    if not isinstance(payload, dict):
        raise SchemaInferenceError("inference service returned a non-object payload")

    mapping = parse_mapping(payload, catalog_mode=catalog_mode)
    logger.info(
        "schema inferred",
        extra={"dataset": mapping.dataset_name, "relation": mapping.target_relation, "fields": len(mapping.field_mappings)},
    )
    return mapping
