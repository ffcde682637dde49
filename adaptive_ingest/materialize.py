from collections.abc import Callable
import logging
import re
import time

from adaptive_ingest.catalog import (
    BOOKKEEPING_FIELDS,
    FIXED_RELATIONS,
    is_table_constraint,
    parse_definition_fields,
    relation_fields,
    split_definition,
)
from adaptive_ingest.errors import MaterializationError, StoreError
from adaptive_ingest.schemas import RelationState, ResolvedRelation, SchemaMapping
from adaptive_ingest.store import SqlStore


logger = logging.getLogger(__name__)

MAX_BASE_NAME_LENGTH = 40
SQL_TYPES = {"string": "text", "number": "numeric", "date": "date"}

_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^a-z0-9_]+")
_PUNCTUATION = re.compile(r"[^\w\s,()]", re.UNICODE)


def sanitize_identifier(name: str) -> str:
    cleaned = _UNSAFE_IDENTIFIER_CHARS.sub("_", name.strip().lower()).strip("_")
    cleaned = re.sub(r"_+", "_", cleaned)
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"dataset_{cleaned}".rstrip("_")
    return cleaned[:MAX_BASE_NAME_LENGTH].rstrip("_")


def derive_relation_name(inferred_name: str, *, clock: Callable[[], int] = time.time_ns) -> str:
    return f"{sanitize_identifier(inferred_name)}_{clock()}"


def _has_enclosing_parens(text: str) -> bool:
    if not (text.startswith("(") and text.endswith(")")):
        return False
    depth = 0
    for index, char in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            # The opening paren closes before the end, so the pair is not enclosing.
            if depth == 0 and index != len(text) - 1:
                return False
    return depth == 0


def sanitize_definition(fragment: str) -> str:
    """Reduce a generated column-definition fragment to a bare comma-separated body."""
    text = fragment.strip()
    while True:
        previous = text
        text = text.rstrip(";").strip()
        if _has_enclosing_parens(text):
            text = text[1:-1].strip()
        text = text.rstrip(",").strip()
        if text == previous:
            return text


def strip_punctuation(fragment: str) -> str:
    return sanitize_definition(_PUNCTUATION.sub("", fragment))


def definition_from_mapping(mapping: SchemaMapping) -> str:
    return ", ".join(f"{fm.target_field} {SQL_TYPES.get(fm.value_kind, 'text')}" for fm in mapping.field_mappings)


def with_bookkeeping_columns(definition: str) -> str:
    existing = set(parse_definition_fields(definition))
    extra = [f"{name} text" for name in BOOKKEEPING_FIELDS if name not in existing]
    if not extra:
        return definition

    # Table constraints must follow every column definition.
    parts = split_definition(definition)
    columns = [part for part in parts if not is_table_constraint(part)]
    constraints = [part for part in parts if is_table_constraint(part)]
    return ", ".join([*columns, *extra, *constraints])


def build_create_statement(relation_name: str, definition: str) -> str:
    return f"CREATE TABLE IF NOT EXISTS {relation_name} ({definition})"


def materialize(
    mapping: SchemaMapping,
    store: SqlStore,
    *,
    clock: Callable[[], int] = time.time_ns,
    sanitizer: Callable[[str], str] = sanitize_definition,
) -> ResolvedRelation:
    if mapping.target_relation in FIXED_RELATIONS:
        return ResolvedRelation(
            name=mapping.target_relation,
            fields=relation_fields(mapping),
            fixed=True,
        )

    state = RelationState.UNRESOLVED
    logger.debug("resolving relation", extra={"relation": mapping.target_relation, "state": state.value})
    raw_definition = mapping.relation_definition or definition_from_mapping(mapping)
    definition = with_bookkeeping_columns(sanitizer(raw_definition))
    name = derive_relation_name(mapping.target_relation, clock=clock)
    statement = build_create_statement(name, definition)

    state = RelationState.MATERIALIZING
    logger.info("materializing relation", extra={"relation": name, "state": state.value})
    try:
        store.execute_raw(statement)
    except StoreError as exc:
        raise MaterializationError(str(exc), statement=statement, definition=definition) from exc

    state = RelationState.RESOLVED
    return ResolvedRelation(
        name=name,
        fields=parse_definition_fields(definition),
        fixed=False,
        created=True,
        state=state,
        create_statement=statement,
    )
