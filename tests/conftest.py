from collections.abc import Callable
import copy
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine

from adaptive_ingest.config import Capabilities, Settings
from adaptive_ingest.database import build_engine
from adaptive_ingest.pipeline import IngestionPipeline
from adaptive_ingest.store import SqlStore


RESIDENT_MAPPING = {
    "datasetName": "외국인 주민 현황",
    "targetRelation": "foreign_residents_stats",
    "fieldMappings": [
        {"sourceLabel": "지역", "targetField": "region", "valueKind": "string"},
        {"sourceLabel": "인원", "targetField": "resident_count", "valueKind": "number"},
        {"sourceLabel": "국적", "targetField": "nationality", "valueKind": "string"},
    ],
    "xAxisField": "region",
    "yAxisField": "resident_count",
    "unit": "명",
}


class FakeInferenceService:
    """Returns canned payloads in order and records every prompt it receives."""

    def __init__(self, *responses: dict[str, Any] | Exception | Callable[[str], dict[str, Any]]) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.schemas: list[dict[str, Any]] = []

    def generate_json(self, prompt: str, response_schema: dict[str, Any]) -> dict[str, Any]:
        self.prompts.append(prompt)
        self.schemas.append(response_schema)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        return response


@pytest.fixture()
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        app_name="adaptive-ingest",
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        log_level="INFO",
        inference_model="test-model",
        inference_api_key="test-key",
        sample_size=5,
        batch_size=2,
        catalog_mode="fixed",
        writable_relations=(),
        max_recovery_retries=1,
        retry_backoff_seconds=0,
        analyze_after_load=False,
    )


@pytest.fixture()
def engine(test_settings: Settings) -> Engine:
    return build_engine(test_settings.database_url)


@pytest.fixture()
def store(engine: Engine) -> SqlStore:
    return SqlStore(engine)


@pytest.fixture()
def make_pipeline(test_settings: Settings, store: SqlStore):
    def factory(service, *, settings: Settings | None = None, pipeline_store: SqlStore | None = None):
        active = settings or test_settings
        return IngestionPipeline(
            active,
            pipeline_store or store,
            service,
            capabilities=Capabilities(can_infer=True),
        )

    return factory


@pytest.fixture()
def resident_mapping() -> dict[str, Any]:
    return copy.deepcopy(RESIDENT_MAPPING)
