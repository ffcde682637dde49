from collections.abc import Iterable, Sequence
from datetime import date, datetime
import json

from adaptive_ingest.catalog import REQUIRED_FIELDS, SOURCE_TYPE_FILE, UNCLASSIFIED, relation_fields
from adaptive_ingest.normalize import normalize_number
from adaptive_ingest.schemas import FieldMapping, NormalizedRecord, RawRow, SchemaMapping


def _lookup(row: RawRow, field_mapping: FieldMapping) -> object:
    value = row.get(field_mapping.source_label)
    if value is None:
        # Source columns that already carry target names.
        value = row.get(field_mapping.target_field)
    return value


def _coerce(value: object, value_kind: str) -> object:
    if value_kind == "number":
        return normalize_number(value)
    if value is None:
        return ""
    if value_kind == "date" and isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value).strip()


def _audit_payload(row: RawRow) -> str:
    return json.dumps(row, ensure_ascii=False, default=str)


def project_row(row: RawRow, mapping: SchemaMapping, valid_fields: Iterable[str]) -> NormalizedRecord:
    allowed = set(valid_fields)
    record: NormalizedRecord = {}
    for field_mapping in mapping.field_mappings:
        if field_mapping.target_field not in allowed:
            continue
        record[field_mapping.target_field] = _coerce(_lookup(row, field_mapping), field_mapping.value_kind)

    for required in REQUIRED_FIELDS:
        if required in allowed and not record.get(required):
            record[required] = UNCLASSIFIED

    if "source_type" in allowed:
        record["source_type"] = SOURCE_TYPE_FILE
    if "raw_data" in allowed:
        record["raw_data"] = _audit_payload(row)
    return record


def project(rows: Sequence[RawRow], mapping: SchemaMapping) -> list[NormalizedRecord]:
    valid_fields = relation_fields(mapping)
    return [project_row(row, mapping, valid_fields) for row in rows]


def restrict_records(records: Sequence[NormalizedRecord], fields: Iterable[str]) -> list[NormalizedRecord]:
    allowed = set(fields)
    return [{key: value for key, value in record.items() if key in allowed} for record in records]
