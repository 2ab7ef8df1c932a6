"""
Command-line driver for the review engine.

Usage:
    python -m reviewpilot.main --pr-file pr.json
    python -m reviewpilot.main --pr-file sample.json --no-llm
    python -m reviewpilot.main --pr-file sample.json --provider anthropic
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from reviewpilot.config import EngineConfig
from reviewpilot.models import PRMetrics, PullRequest, RoutingContext
from reviewpilot.performance import InMemoryPerformanceStore
from reviewpilot.prompts import PROMPT_VERSION
from reviewpilot.providers import ProviderGateway
from reviewpilot.reviewer import CodeReviewer
from reviewpilot.risk import RiskScorer
from reviewpilot.router import ModelRouter
from reviewpilot.rules import compute_risk

logger = logging.getLogger(__name__)

# Rough chars-per-token ratio for routing estimates
CHARS_PER_TOKEN = 4


def load_pr_from_file(filepath: str) -> PullRequest:
    """Load PR data from JSON file."""
    with open(filepath, 'r') as f:
        data = json.load(f)
    return PullRequest(**data)


def metrics_for(pr: PullRequest) -> PRMetrics:
    """Use the supplied metrics, or derive them from the files."""
    if pr.metrics is not None:
        return pr.metrics
    return PRMetrics(
        lines_added=sum(f.additions for f in pr.files),
        lines_removed=sum(f.deletions for f in pr.files),
        files_changed=len(pr.files),
        test_files_changed=len([f for f in pr.files if "test" in f.file_path.lower()]),
    )


def primary_language(pr: PullRequest) -> str:
    if pr.primary_language:
        return pr.primary_language
    languages = [f.language for f in pr.files if f.language]
    if not languages:
        return "unknown"
    # Ties go to the language seen first
    return max(languages, key=languages.count)


async def run_review(pr: PullRequest, gateway: Optional[ProviderGateway], use_llm: bool = True) -> dict:
    """Run every engine component on one PR and collect the results."""
    metrics = metrics_for(pr)

    heuristic = compute_risk(
        files_changed=metrics.files_changed,
        lines_added=metrics.lines_added,
        lines_removed=metrics.lines_removed,
        title=pr.title,
        repo_full_name=pr.repo_full_name,
        file_paths=[f.file_path for f in pr.files],
        custom_rules=pr.custom_rules,
    )

    ai_enabled = use_llm and gateway is not None and bool(gateway.available_providers())
    assessment = await RiskScorer(gateway if ai_enabled else None).assess(pr.files, metrics)

    router = ModelRouter(InMemoryPerformanceStore())
    routing = router.route(RoutingContext(
        files=pr.files,
        primary_language=primary_language(pr),
        total_tokens=sum(len(f.diff) for f in pr.files) // CHARS_PER_TOKEN,
        risk_level=assessment.level,
        pr_type=pr.pr_type,
        repo_id=pr.repo_full_name,
    ))

    comments = []
    if ai_enabled:
        rules = [f"- {r.name}: {r.prompt}" for r in pr.custom_rules if r.enabled and r.prompt]
        batch = await CodeReviewer(gateway).review_batch(
            pr.files, rules, timeout=gateway.config.request_timeout * 2
        )
        comments = batch.comments
        if batch.failed_files:
            logger.warning(f"AI review failed for: {', '.join(batch.failed_files)}")

    return {
        "pr_number": pr.pr_number,
        "heuristic": heuristic.model_dump(),
        "risk": assessment.model_dump(),
        "routing": routing.model_dump(),
        "comments": [c.model_dump() for c in comments],
        "metadata": {
            "prompt_version": PROMPT_VERSION,
            "llm_used": ai_enabled,
            "review_provider": gateway.provider_for_task("code_review") if ai_enabled else None,
        },
    }


def save_output(output: dict, filepath: str):
    """Save review output to JSON file."""
    output_dir = Path(filepath).parent
    output_dir.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(output, f, indent=2)

    print(f"\nReview output saved to: {filepath}")


def print_summary(output: dict):
    """Print human-readable summary to console."""
    print("\n" + "=" * 60)
    print(f"CODE REVIEW SUMMARY - PR #{output['pr_number']}")
    print("=" * 60)

    heuristic = output["heuristic"]
    risk = output["risk"]
    routing = output["routing"]
    print(f"\n{heuristic['summary']}")
    print(f"Heuristic score: {heuristic['risk_score']} ({heuristic['risk_level']})")
    print(f"Risk score: {risk['score']} ({risk['level']}){' [AI-assisted]' if risk['ai_used'] else ''}")
    for suggestion in risk["suggestions"]:
        print(f"  - {suggestion}")

    print(f"\nRouted to: {routing['primary_model']}", end="")
    if routing["secondary_model"]:
        print(f" + {routing['secondary_model']}", end="")
    print(f" (confidence {routing['confidence']:.2f})")

    comments = output["comments"]
    if comments:
        print("\n" + "-" * 60)
        print("COMMENTS:")
        print("-" * 60)
        for i, comment in enumerate(comments, 1):
            print(f"\n{i}. [{comment['severity'].upper()}] {comment['category']}")
            print(f"   {comment['body']}")
            print(f"   {comment['file_path']}:{comment['line_number']}  confidence {comment['confidence']:.2f}")
    elif output["metadata"]["llm_used"]:
        print("\nNo review comments.")

    print("\n" + "=" * 60)


def main(argv=None):
    """Main CLI entry point."""
    load_dotenv()  # Load environment variables from .env file
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    parser = argparse.ArgumentParser(
        description="Review engine - risk, routing and AI review for a PR JSON file"
    )
    parser.add_argument("--pr-file", required=True, help="Path to PR JSON file")
    parser.add_argument(
        "--output",
        default="output/review_results.json",
        help="Output file path (default: output/review_results.json)",
    )
    parser.add_argument("--no-llm", action="store_true", help="Skip model calls, deterministic checks only")
    parser.add_argument(
        "--provider",
        choices=["anthropic", "openai", "google", "local"],
        help="Use this provider for every task",
    )
    args = parser.parse_args(argv)

    try:
        pr = load_pr_from_file(args.pr_file)
        print(f"Loaded PR #{pr.pr_number}: {pr.title}")

        gateway = None
        if not args.no_llm:
            config = EngineConfig.from_env()
            if args.provider:
                config = EngineConfig(
                    providers=config.providers,
                    default_provider=args.provider,
                    max_concurrency=config.max_concurrency,
                    request_timeout=config.request_timeout,
                )
            gateway = ProviderGateway(config)

        output = asyncio.run(run_review(pr, gateway, use_llm=not args.no_llm))
        print_summary(output)
        save_output(output, args.output)
        return 0

    except FileNotFoundError:
        print(f"Error: PR file not found: {args.pr_file}", file=sys.stderr)
        return 1

    except (ValidationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
