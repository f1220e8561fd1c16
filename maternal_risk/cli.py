import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from maternal_risk.config import settings
from maternal_risk.errors import ConfigurationError, ValidationError
from maternal_risk.schemas.internal_models import UseCase
from maternal_risk.services.assessment_service import create_assessment_service
from maternal_risk.services.metrics_service import MetricsService
from maternal_risk.utils.logging_setup import setup_logging

logger = logging.getLogger("RiskCLI")


def _read_input(path: str):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


async def run_assessment(path: str, use_case: str) -> int:
    try:
        patient = _read_input(path)
    except (OSError, ValueError) as e:
        print(f"[ERROR] Could not read patient input: {e}", file=sys.stderr)
        return 2

    try:
        service = create_assessment_service()
        report = await service.assess(patient, use_case=UseCase(use_case))
    except ConfigurationError as e:
        print(f"[CONFIG ERROR] {e}", file=sys.stderr)
        return 3
    except ValidationError as e:
        print(f"[ERROR] Clinical Validation Failed: {e}", file=sys.stderr)
        for err in e.errors:
            print(f"  - {err}", file=sys.stderr)
        return 2

    print(report.model_dump_json(by_alias=True, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="maternal-risk", description="Pregnancy risk assessment")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    assess = sub.add_parser("assess", help="Score a patient record and print the JSON report")
    assess.add_argument("input", help="Path to a patient JSON file, or - for stdin")
    assess.add_argument(
        "--use-case", default=UseCase.RISK_PREDICTION.value, choices=[u.value for u in UseCase]
    )

    sub.add_parser("health", help="Print model health and the version manifest")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "health":
        print(json.dumps({"versions": settings.VERSION_MANIFEST, "models": MetricsService.get_health_report()}, indent=2))
        return 0
    try:
        return asyncio.run(run_assessment(args.input, args.use_case))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
