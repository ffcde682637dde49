import argparse
from dataclasses import replace
import logging
from pathlib import Path

from sqlalchemy import Engine

from adaptive_ingest.analysis import deep_dive, sample_relation, summarize_regions
from adaptive_ingest.catalog import FIXED_RELATIONS
from adaptive_ingest.config import Capabilities, Settings, get_settings
from adaptive_ingest.database import build_engine, build_session_factory
from adaptive_ingest.inference import OpenAIInferenceService
from adaptive_ingest.pipeline import IngestionPipeline
from adaptive_ingest.schemas import ProgressEvent
from adaptive_ingest.sources import read_rows
from adaptive_ingest.store import SqlStore


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Infer a schema for a spreadsheet and load it")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser("ingest", help="ingest one uploaded file")
    ingest_parser.add_argument("--file", required=True, type=Path, help="CSV, JSON or JSONL file to ingest")
    ingest_parser.add_argument("--batch-size", type=int, default=None, help="records per insert batch")

    subparsers.add_parser("regions", help="print residents and policy budget per region")

    analyze_parser = subparsers.add_parser("analyze", help="write an in-depth report on one topic")
    analyze_parser.add_argument("--topic", required=True, help="subject of the report")
    analyze_parser.add_argument(
        "--relation",
        default="foreign_residents_stats",
        choices=sorted(FIXED_RELATIONS),
        help="catalog relation to sample",
    )

    return parser.parse_args()


def print_event(event: ProgressEvent) -> None:
    print(f"status={event.status} message={event.message}")


def run_deep_dive(settings: Settings, engine: Engine, *, topic: str, relation: str) -> None:
    if not Capabilities.from_settings(settings).can_infer:
        print("status=failed message=inference service credentials are not configured")
        raise SystemExit(1)

    with build_session_factory(engine)() as db:
        records = sample_relation(db, relation)

    service = OpenAIInferenceService(settings.inference_api_key, model=settings.inference_model)
    report = deep_dive(records, topic, relation, service)
    if report is None:
        print("status=failed message=analysis service did not return a report")
        raise SystemExit(1)

    print(f"title={report.report_title}")
    print(f"summary={report.summary}")
    for suggestion in report.strategic_suggestions:
        print(f"suggestion={suggestion}")
    print(f"risk={report.risk_factor}")


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    engine = build_engine(settings.database_url)
    if args.command == "regions":
        with build_session_factory(engine)() as db:
            for summary in summarize_regions(db):
                print(
                    "region={region} residents={residents} budget_millions={budget:.2f} mismatch_ratio={ratio:.4f}".format(
                        region=summary.region,
                        residents=summary.residents,
                        budget=summary.budget_millions,
                        ratio=summary.mismatch_ratio,
                    )
                )
        return

    if args.command == "analyze":
        run_deep_dive(settings, engine, topic=args.topic, relation=args.relation)
        return

    if args.batch_size is not None and args.batch_size < 1:
        raise SystemExit("--batch-size must be at least 1")

    rows = read_rows(args.file)
    capabilities = Capabilities.from_settings(settings)
    service = (
        OpenAIInferenceService(settings.inference_api_key, model=settings.inference_model)
        if capabilities.can_infer
        else None
    )
    if args.batch_size:
        settings = replace(settings, batch_size=args.batch_size)

    store = SqlStore(engine, writable_relations=settings.writable_relations)
    pipeline = IngestionPipeline(settings, store, service, capabilities=capabilities)
    run = pipeline.run(rows, on_event=print_event)

    print(
        "status={status} relation={relation} loaded={loaded} total={total} kind={kind}".format(
            status=run.status,
            relation=run.relation.name if run.relation else "-",
            loaded=run.records_loaded,
            total=run.records_total,
            kind=run.error.kind if run.error else "-",
        )
    )
    if run.error and run.error.remediation_hint:
        print(f"hint={run.error.remediation_hint}")
    if run.status == "failed":
        raise SystemExit(1)


if __name__ == "__main__":
    main()
