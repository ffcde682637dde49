import pytest
from sqlalchemy.orm import Session

from adaptive_ingest.analysis import analyze_upload, deep_dive, sample_relation, summarize_regions
from adaptive_ingest.db_models import ForeignResidentStat, LocalPolicy
from adaptive_ingest.inference import parse_mapping
from conftest import FakeInferenceService


RECORDS = [
    {"region": "서울", "resident_count": 1200, "raw_data": "{\"지역\": \"서울\"}"},
    {"region": "부산", "resident_count": 300, "raw_data": "{\"지역\": \"부산\"}"},
]


def test_analyze_upload_parses_insights_and_recommendations(resident_mapping) -> None:
    service = FakeInferenceService(
        {
            "insights": [
                {"title": "서울 집중", "content": "서울 비중이 80%", "type": "trend"},
                {"title": "이상치", "content": "부산 급증", "type": "surprise"},
            ],
            "recommendations": [{"title": "국적별 분석", "description": "국적 분포 비교", "icon": "fa-solid fa-flag"}],
        }
    )

    analysis = analyze_upload(RECORDS, parse_mapping(resident_mapping, catalog_mode="fixed"), service)

    assert [insight.type for insight in analysis.insights] == ["trend", "trend"]
    assert analysis.recommendations[0].id == "1"
    assert "raw_data" not in service.prompts[0]
    assert "외국인 주민 현황" in service.prompts[0]


def test_analyze_upload_returns_none_when_service_fails(resident_mapping) -> None:
    service = FakeInferenceService(ConnectionError("network unreachable"))

    assert analyze_upload(RECORDS, parse_mapping(resident_mapping, catalog_mode="fixed"), service) is None


def test_deep_dive_builds_detailed_report() -> None:
    service = FakeInferenceService(
        {
            "reportTitle": "지역별 지원 격차",
            "summary": "예산 대비 거주 인구 편차가 크다",
            "strategicSuggestions": ["예산 재배분", "통역 지원 확대"],
            "riskFactor": "표본 편향",
        }
    )

    report = deep_dive(RECORDS, "지역별 격차", "foreign_residents_stats", service)

    assert report.report_title == "지역별 지원 격차"
    assert report.strategic_suggestions == ("예산 재배분", "통역 지원 확대")
    assert '"지역별 격차"' in service.prompts[0]


def test_deep_dive_returns_none_on_incomplete_reply() -> None:
    assert deep_dive(RECORDS, "topic", "local_policies", FakeInferenceService({"summary": "only"})) is None


def test_summarize_regions_computes_mismatch_ratio(engine) -> None:
    with Session(engine) as db:
        db.add_all(
            [
                ForeignResidentStat(region="서울", resident_count=1000),
                ForeignResidentStat(region="서울", resident_count=1000),
                ForeignResidentStat(region="부산", resident_count=500),
                LocalPolicy(region="서울", category="교육", budget=4_000_000_000),
                LocalPolicy(region="제주", category="의료", budget=1_000_000),
            ]
        )
        db.commit()

        summaries = summarize_regions(db)

    assert [summary.region for summary in summaries] == ["서울", "부산"]
    seoul, busan = summaries
    assert seoul.residents == 2000
    assert seoul.budget_millions == pytest.approx(4000)
    assert seoul.mismatch_ratio == pytest.approx(2.0)
    assert busan.budget_millions == 0
    assert busan.mismatch_ratio == 0


def test_sample_relation_returns_first_rows_in_insert_order(engine) -> None:
    with Session(engine) as db:
        db.add_all([ForeignResidentStat(region=region, resident_count=10) for region in ("서울", "부산", "대구")])
        db.commit()

        sample = sample_relation(db, "foreign_residents_stats", limit=2)

    assert [row["region"] for row in sample] == ["서울", "부산"]
    assert sample[0]["resident_count"] == 10


def test_sample_relation_rejects_unknown_relation(engine) -> None:
    with Session(engine) as db, pytest.raises(ValueError, match="unknown relation"):
        sample_relation(db, "clinics_1")
