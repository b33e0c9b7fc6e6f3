#!/usr/bin/env python3
"""Command-line interface for docsmith.

Commands:
- research: Research a product across every enabled source
- complete: Run a prompt through the LLM provider chain
- limits: Show the research depth a plan allows for a product size
- validate: Validate configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from docsmith.core.config import Config, get_config
from docsmith.core.logging_setup import DEFAULT_FORMAT, configure_comprehensive_logging
from docsmith.core.orchestrator import ResearchOrchestrator, ResearchReport
from docsmith.core.tiers import SOURCE_LABELS, SOURCE_ORDER, ResearchPlan
from docsmith.integrations.llm import ChatMessage

# Global performance logger
performance_logger = None


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="docsmith documentation research CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  docsmith research Stripe https://stripe.com --plan pro --pages 60
  docsmith complete "Summarise the Stripe webhooks guide" --json-mode
  docsmith limits --plan free --pages 30
  docsmith validate --strict
        """,
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        help="Directory for log files (default: directory of logging.file)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: logging.level from config)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Use JSON structured logging format",
    )
    parser.add_argument(
        "--config",
        help="Path to a YAML or TOML config file",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Research
    research_parser = subparsers.add_parser("research", help="Research a product")
    research_parser.add_argument("product", help="Product name")
    research_parser.add_argument("url", help="Product homepage URL")
    research_parser.add_argument("--plan", default="free", help="Subscription plan (default: free)")
    research_parser.add_argument("--pages", type=int, default=1, help="Known documentation page count")
    research_parser.add_argument("--popularity", type=int, help="Popularity signal (e.g. GitHub stars)")
    research_parser.add_argument("--total-limit", type=int, help="Maximum merged results")
    research_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Complete
    complete_parser = subparsers.add_parser("complete", help="Run a prompt through the LLM chain")
    complete_parser.add_argument("prompt", help="User prompt")
    complete_parser.add_argument("--system", help="System prompt")
    complete_parser.add_argument(
        "--json-mode", action="store_true", help="Request JSON output and print the decoded document"
    )
    complete_parser.add_argument(
        "--cache", action="store_true", help="Reuse a cached answer when every provider fails"
    )
    complete_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Limits
    limits_parser = subparsers.add_parser("limits", help="Show research limits for a plan")
    limits_parser.add_argument("--plan", default="free", help="Subscription plan (default: free)")
    limits_parser.add_argument("--pages", type=int, default=1, help="Known documentation page count")
    limits_parser.add_argument("--popularity", type=int, help="Popularity signal")
    limits_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # Validate
    validate_parser = subparsers.add_parser("validate", help="Validate configuration")
    validate_parser.add_argument(
        "--strict", action="store_true", help="Exit with error if validation fails"
    )

    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    global performance_logger

    config = get_config(args.config)
    level_name = (args.log_level or str(config.get("logging.level", "INFO"))).upper()
    performance_logger = configure_comprehensive_logging(
        log_dir=args.log_dir or Path(str(config.get("logging.file", "logs/docsmith.log"))).parent,
        level=getattr(logging, level_name, logging.INFO),
        use_json=args.json_logs or bool(config.get("logging.json", False)),
        console_output=True,
        fmt=str(config.get("logging.format", DEFAULT_FORMAT)),
    )

    logger = logging.getLogger(__name__)
    logger.info("docsmith CLI started with command: %s", args.command)

    if args.command == "validate":
        return await handle_validate(args, config)
    if args.command == "limits":
        return await handle_limits(args, config)
    if args.command == "research":
        return await handle_research(args, config)
    if args.command == "complete":
        return await handle_complete(args, config)

    logger.error("Unknown command: %s", args.command)
    return 2


def format_plan(plan: ResearchPlan) -> str:
    lines = [f"Plan: {plan.enforced.plan}  Complexity: {plan.complexity.value}"]
    for source in SOURCE_ORDER:
        desired, allowed = plan.desired[source], plan.limits[source]
        marker = "  (limited)" if allowed < desired else ""
        lines.append(f"  {SOURCE_LABELS[source]:<15} {allowed:>3} / {desired:<3}{marker}")
    lines.append(f"YouTube API: {plan.enforced.youtube_api_access}  Transcripts: {plan.enforced.youtube_transcripts}")
    if plan.enforced.upgrade_message:
        lines.append(plan.enforced.upgrade_message)
    return "\n".join(lines)


def format_report(report: ResearchReport) -> str:
    lines = [
        f"Research for {report.product_name} ({report.base_url})",
        f"Total sources: {report.total_sources}  Quality: {report.quality_score:.2f}",
    ]
    for source in SOURCE_ORDER:
        result = report.results.get(source)
        if result is None:
            continue
        origin = f"{result.provider_label}{' (cached)' if result.from_cache else ''}"
        lines.append(f"  {SOURCE_LABELS[source]:<15} {len(result.items):>3}  via {origin or '-'}")
    for failure in report.failures:
        lines.append(f"  ! {failure.source}: {failure.error_type} ({failure.severity.value})")
    if report.items:
        lines.append("Top results:")
        for item in report.items[:10]:
            lines.append(f"  [{item.rank_score:.2f}] {item.title} - {item.url}")
    return "\n".join(lines)


async def handle_limits(args: argparse.Namespace, config: Config) -> int:
    """Handle the limits command."""
    async with ResearchOrchestrator(config, performance_logger=performance_logger) as orchestrator:
        plan = orchestrator.plan(args.plan, args.pages, args.popularity)
    if args.json:
        print(json.dumps(plan.to_dict(), indent=2))
    else:
        print(format_plan(plan))
    return 0


async def handle_research(args: argparse.Namespace, config: Config) -> int:
    """Handle the research command."""
    async with ResearchOrchestrator(config, performance_logger=performance_logger) as orchestrator:
        plan = orchestrator.plan(args.plan, args.pages, args.popularity)
        report = await orchestrator.perform_comprehensive_research(
            args.product,
            args.url,
            plan.limits,
            complexity=plan.complexity,
            total_limit=args.total_limit,
            tier=plan.enforced,
        )
    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(format_report(report))
    return 0


async def handle_complete(args: argparse.Namespace, config: Config) -> int:
    """Handle the complete command."""
    messages = []
    if args.system:
        messages.append(ChatMessage("system", args.system))
    messages.append(ChatMessage("user", args.prompt))

    async with ResearchOrchestrator(config, performance_logger=performance_logger) as orchestrator:
        if args.json_mode:
            document = await orchestrator.generate_json(messages, cache=args.cache)
        else:
            result = await orchestrator.generate_completion(messages, cache=args.cache)

    if args.json_mode:
        print(json.dumps(document, indent=2))
    elif args.json:
        output: Dict[str, Any] = {
            "content": result.content,
            "provider": result.provider_label,
            "model": result.model_id,
        }
        print(json.dumps(output, indent=2))
    else:
        print(result.content)
        print(f"\n-- {result.provider_label} ({result.model_id})", file=sys.stderr)
    return 0


async def handle_validate(args: argparse.Namespace, config: Optional[Config] = None) -> int:
    """Handle the validate command."""
    config = config or get_config()
    result = config.validate()

    print(result)

    if args.strict and not result.is_valid:
        return 1

    return 0


def main() -> None:
    args = parse_args(sys.argv[1:])
    try:
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nAborted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
