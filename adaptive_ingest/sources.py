import csv
import json
from pathlib import Path

from adaptive_ingest.schemas import RawRow


def read_rows(input_path: Path) -> list[RawRow]:
    """Read rows from a CSV, JSON array or JSONL file, keeping headers verbatim."""
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    suffix = input_path.suffix.lower()
    if suffix == ".csv":
        # utf-8-sig drops the BOM spreadsheet exports often prepend.
        with input_path.open("r", encoding="utf-8-sig", newline="") as infile:
            return [dict(row) for row in csv.DictReader(infile)]

    if suffix == ".json":
        with input_path.open("r", encoding="utf-8") as infile:
            payload = json.load(infile)
        if not isinstance(payload, list):
            raise ValueError(f"expected a JSON array of objects in {input_path}")
        return [dict(row) for row in payload]

    if suffix == ".jsonl":
        rows: list[RawRow] = []
        with input_path.open("r", encoding="utf-8") as infile:
            for line in infile:
                line = line.strip()
                if not line:
                    continue
                rows.append(json.loads(line))
        return rows

    raise ValueError(f"unsupported file type: {input_path.suffix}")
