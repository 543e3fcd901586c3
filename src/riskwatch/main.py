from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import RiskWatchConfig
from .constants import ExitCode
from .errors import RiskWatchError
from .factory import build_ledger, build_orchestrator
from .logging import RiskWatchLogger
from .models import AnalysisKind, AnalysisRequest, News


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="riskwatch", description="News-driven holding risk and opportunity analysis")
    commands = parser.add_subparsers(dest="command", required=True)

    analyze = commands.add_parser("analyze", help="Analyze one holding and print the result as JSON")
    analyze.add_argument("--subject", required=True, help="Holding name or ticker")
    analyze.add_argument(
        "--kind",
        choices=[kind.value for kind in AnalysisKind],
        default=AnalysisKind.RISK.value,
        help="Analysis kind (default: risk)",
    )
    analyze.add_argument(
        "--news",
        type=Path,
        default=None,
        help="JSON file holding a list of news items (title, body, source, publishedAt, url)",
    )

    commands.add_parser("budget", help="Print this month's budget summary as JSON")
    return parser


def load_news(path: Optional[Path]) -> List[News]:
    if path is None:
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("news") or data.get("articles") or []
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of news items")
    return [News.from_dict(item) for item in data if isinstance(item, dict)]


async def _analyze(config: RiskWatchConfig, logger: RiskWatchLogger, args: argparse.Namespace) -> int:
    evidence = load_news(args.news)
    orchestrator = build_orchestrator(config, logger)
    request = AnalysisRequest(args.subject, tuple(evidence), AnalysisKind(args.kind))
    with logger.stage("analyze", subject=args.subject, kind=args.kind):
        result = await orchestrator.analyze(request)
    print(result.model_dump_json(by_alias=True, indent=2))
    return int(ExitCode.SUCCESS)


def _budget(config: RiskWatchConfig, logger: RiskWatchLogger) -> int:
    summary = build_ledger(config, logger).summary()
    payload = {
        "month": str(summary.month),
        "mode": summary.mode.value,
        "totalCost": float(summary.total_cost),
        "monthlyLimit": float(summary.monthly_limit),
        "usedPercentage": summary.used_percentage,
        "remaining": float(summary.remaining),
        "projectedMonthCost": float(summary.projected_month_cost),
        "totalCalls": summary.total_calls,
        "totalTokens": summary.total_tokens,
    }
    print(json.dumps(payload, indent=2))
    return int(ExitCode.SUCCESS)


async def async_main(argv: Optional[List[str]] = None) -> int:
    """Async main entry point."""
    args = _build_parser().parse_args(argv)
    run_id = str(uuid.uuid4())

    try:
        config = RiskWatchConfig()
    except ValidationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return int(ExitCode.CONFIG)

    logger = RiskWatchLogger(run_id, level=config.log_level)
    try:
        if args.command == "budget":
            return _budget(config, logger)
        return await _analyze(config, logger, args)
    except RiskWatchError as exc:
        logger.error("Run failed", error_type=type(exc).__name__, error=str(exc))
        return int(exc.exit_code)
    except (OSError, ValueError) as exc:
        logger.error("Could not read input", error=str(exc))
        return int(ExitCode.ERROR)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    return asyncio.run(async_main(argv))


if __name__ == "__main__":
    sys.exit(main())
