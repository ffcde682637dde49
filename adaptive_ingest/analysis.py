"""Post-ingestion analysis: AI summaries of an upload and regional aggregates."""

from collections.abc import Sequence
import json
import logging
from typing import Any

from openai import OpenAIError
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from adaptive_ingest.catalog import UNCLASSIFIED
from adaptive_ingest.db_models import Base, ForeignResidentStat, LocalPolicy
from adaptive_ingest.errors import IngestError
from adaptive_ingest.inference import InferenceService
from adaptive_ingest.schemas import (
    AIInsight,
    AIRecommendation,
    DetailedAnalysis,
    NormalizedRecord,
    RegionSummary,
    SchemaMapping,
    UploadAnalysis,
)


logger = logging.getLogger(__name__)

UPLOAD_SAMPLE_SIZE = 15
DEEP_DIVE_SAMPLE_SIZE = 10
INSIGHT_TYPES = ("trend", "alert", "opportunity")

_SERVICE_ERRORS = (OpenAIError, IngestError, ConnectionError, TimeoutError, KeyError, TypeError, ValueError)

UPLOAD_ANALYSIS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "content": {"type": "string"},
                    "type": {"type": "string", "enum": list(INSIGHT_TYPES)},
                },
            },
        },
        "recommendations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "icon": {"type": "string"},
                },
            },
        },
    },
}

DEEP_DIVE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "reportTitle": {"type": "string"},
        "summary": {"type": "string"},
        "strategicSuggestions": {"type": "array", "items": {"type": "string"}},
        "riskFactor": {"type": "string"},
    },
    "required": ["reportTitle", "summary"],
}


def _sample_text(records: Sequence[NormalizedRecord], limit: int) -> str:
    # The audit copy of the source row only adds noise to the prompt.
    return "\n".join(
        json.dumps({k: v for k, v in record.items() if k != "raw_data"}, ensure_ascii=False, default=str)
        for record in records[:limit]
    )


def _parse_upload_analysis(payload: dict[str, Any]) -> UploadAnalysis:
    insights = tuple(
        AIInsight(
            title=str(item.get("title", "")),
            content=str(item.get("content", "")),
            type=item.get("type") if item.get("type") in INSIGHT_TYPES else "trend",
        )
        for item in payload.get("insights") or []
    )
    recommendations = tuple(
        AIRecommendation(
            id=str(item.get("id") or index),
            title=str(item.get("title", "")),
            description=str(item.get("description", "")),
            icon=str(item.get("icon", "")),
        )
        for index, item in enumerate(payload.get("recommendations") or [], start=1)
    )
    return UploadAnalysis(insights=insights, recommendations=recommendations)


def analyze_upload(
    records: Sequence[NormalizedRecord],
    mapping: SchemaMapping,
    service: InferenceService,
) -> UploadAnalysis | None:
    """Ask for three insights and three follow-up analyses; ``None`` when the service fails."""
    prompt = "\n".join(
        [
            f"The following is a sample of the uploaded dataset '{mapping.label or mapping.dataset_name}':",
            _sample_text(records, UPLOAD_SAMPLE_SIZE),
            "",
            "Analyse the data as a whole and reply with:",
            "1. insights: three notable characteristics or patterns (type is trend, alert or opportunity).",
            "2. recommendations: three directions for deeper analysis, each with id, title, description",
            "   and a fontawesome icon class.",
        ]
    )
    try:
        payload = service.generate_json(prompt, UPLOAD_ANALYSIS_SCHEMA)
        return _parse_upload_analysis(payload)
    except _SERVICE_ERRORS:
        logger.exception("upload analysis failed", extra={"dataset": mapping.dataset_name})
        return None


def deep_dive(
    records: Sequence[NormalizedRecord],
    topic: str,
    relation: str,
    service: InferenceService,
) -> DetailedAnalysis | None:
    prompt = "\n".join(
        [
            f'Topic: produce an in-depth analysis report on "{topic}".',
            f"Data type: {relation}",
            "Data sample:",
            _sample_text(records, DEEP_DIVE_SAMPLE_SIZE),
            "",
            "Reply with reportTitle, a summary of about 300 characters, three strategicSuggestions",
            "and the riskFactor to watch.",
        ]
    )
    try:
        payload = service.generate_json(prompt, DEEP_DIVE_SCHEMA)
        return DetailedAnalysis(
            report_title=str(payload["reportTitle"]),
            summary=str(payload["summary"]),
            strategic_suggestions=tuple(str(item) for item in payload.get("strategicSuggestions") or []),
            risk_factor=str(payload.get("riskFactor", "")),
        )
    except _SERVICE_ERRORS:
        logger.exception("deep dive analysis failed", extra={"topic": topic})
        return None


def sample_relation(db: Session, relation: str, limit: int = DEEP_DIVE_SAMPLE_SIZE) -> list[NormalizedRecord]:
    table = Base.metadata.tables.get(relation)
    if table is None:
        raise ValueError(f"unknown relation: {relation}")
    rows = db.execute(select(table).order_by(table.c.id).limit(limit)).mappings().all()
    return [dict(row) for row in rows]


def summarize_regions(db: Session) -> list[RegionSummary]:
    """Residents and policy budget per region; budget only counts for regions with residents."""
    resident_rows = db.execute(
        select(ForeignResidentStat.region, func.sum(ForeignResidentStat.resident_count)).group_by(
            ForeignResidentStat.region
        )
    ).all()
    budget_rows = db.execute(select(LocalPolicy.region, func.sum(LocalPolicy.budget)).group_by(LocalPolicy.region)).all()

    residents: dict[str, float] = {}
    for region, total in resident_rows:
        key = region or UNCLASSIFIED
        residents[key] = residents.get(key, 0) + (total or 0)

    budgets: dict[str, float] = {}
    for region, total in budget_rows:
        key = region or UNCLASSIFIED
        budgets[key] = budgets.get(key, 0) + (total or 0)

    summaries = []
    for region, resident_total in residents.items():
        budget_millions = budgets.get(region, 0) / 1_000_000
        ratio = budget_millions / resident_total if resident_total else 0.0
        summaries.append(
            RegionSummary(
                region=region,
                residents=int(resident_total),
                budget_millions=budget_millions,
                mismatch_ratio=ratio,
            )
        )
    summaries.sort(key=lambda summary: summary.residents, reverse=True)
    return summaries
