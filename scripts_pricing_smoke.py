#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from shared.schemas.domain import FreelancerProfile, ProjectRules

from services.orchestrator.app.engine import PricingOrchestrator
from services.orchestrator.app.policy import load_stage_settings
from services.orchestrator.app.providers.clients import make_completion_client


def _now_slug() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run clarification and the full pricing pipeline once.")
    parser.add_argument("--provider", default="mock", help="anthropic, openai, gemini, deepseek or mock")
    parser.add_argument("--request", default="Add password reset functionality")
    parser.add_argument("--hourly-rate", type=float, default=125.0)
    parser.add_argument("--location", default="")
    parser.add_argument("--output-dir", default="benchmarks/results")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    settings = load_stage_settings()
    orchestrator = PricingOrchestrator(make_completion_client(args.provider, max_tokens=settings.max_output_tokens), settings)
    rules = ProjectRules(hourly_rate=args.hourly_rate, deliverables=["Marketing website", "User login"])
    user = FreelancerProfile(
        hourly_rate=args.hourly_rate,
        location=args.location or None,
        specializations=["web development"],
    )

    questions = orchestrator.clarify(args.request, rules=rules)
    answers = {question.question: (question.options or ["As described"])[0] for question in questions}
    run = orchestrator.run_pipeline(args.request, answers, rules=rules, user=user)

    out_dir = Path(args.output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"pricing_smoke_{args.provider}_{_now_slug()}.json"
    out_path.write_text(
        json.dumps(
            {
                "questions": [question.model_dump(mode="json", by_alias=True) for question in questions],
                "result": run.result.model_dump(mode="json", by_alias=True),
                "observability": run.observability.to_dict(),
            },
            indent=2,
        )
    )
    print(out_path)
    for question in questions:
        print(f"  question [{question.category.value}] {question.question}")
    price_range = run.result.price_range
    print(
        f"price={run.result.suggested_price} range={price_range.min if price_range else None}-"
        f"{price_range.max if price_range else None} confidence={run.result.confidence:.2f} "
        f"fallback={run.result.is_fallback} degraded={','.join(run.result.degraded_stages) or 'none'} "
        f"est_cost_usd={run.observability.total_estimated_cost_usd:.4f}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
