"""Fixed relation catalog and helpers for reasoning about a relation's shape."""

from dataclasses import dataclass
import re

from adaptive_ingest.db_models import ForeignResidentStat, LocalPolicy
from adaptive_ingest.schemas import SchemaMapping


UNCLASSIFIED = "미분류"
SOURCE_TYPE_FILE = "FILE"

BOOKKEEPING_FIELDS = ("source_type", "raw_data")
REQUIRED_FIELDS = ("region", "category")

_STORE_MANAGED_COLUMNS = {"id", "collected_at"}
_CONSTRAINT_KEYWORDS = {"primary", "unique", "constraint", "foreign", "check"}

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


@dataclass(frozen=True)
class CatalogRelation:
    name: str
    description: str
    fields: tuple[str, ...]

    @property
    def mappable_fields(self) -> tuple[str, ...]:
        return tuple(name for name in self.fields if name not in BOOKKEEPING_FIELDS)


def _relation_from_model(model, description: str) -> CatalogRelation:
    columns = [column.name for column in model.__table__.columns if column.name not in _STORE_MANAGED_COLUMNS]
    return CatalogRelation(name=model.__tablename__, description=description, fields=tuple(columns))


FIXED_RELATIONS: dict[str, CatalogRelation] = {
    relation.name: relation
    for relation in (
        _relation_from_model(ForeignResidentStat, "foreign resident counts per region"),
        _relation_from_model(LocalPolicy, "local government support policies and budgets"),
    )
}


def is_fixed_relation(name: str) -> bool:
    return name in FIXED_RELATIONS


def allowed_target_fields() -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for relation in FIXED_RELATIONS.values():
        for name in relation.mappable_fields:
            seen.setdefault(name, None)
    return tuple(seen)


def split_definition(fragment: str) -> list[str]:
    """Split a column-definition fragment on top-level commas only."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in fragment:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [part for part in parts if part]


def is_table_constraint(part: str) -> bool:
    return part.split()[0].lower() in _CONSTRAINT_KEYWORDS


def parse_definition_fields(fragment: str) -> tuple[str, ...]:
    return tuple(
        part.split()[0].strip('"').lower() for part in split_definition(fragment) if not is_table_constraint(part)
    )


def relation_fields(mapping: SchemaMapping) -> tuple[str, ...]:
    """Fields a record for this mapping may carry, bookkeeping included."""
    fixed = FIXED_RELATIONS.get(mapping.target_relation)
    if fixed is not None:
        return fixed.fields

    if mapping.relation_definition:
        inferred = parse_definition_fields(mapping.relation_definition)
    else:
        inferred = mapping.target_fields

    fields = list(inferred)
    for name in BOOKKEEPING_FIELDS:
        if name not in fields:
            fields.append(name)
    return tuple(fields)
