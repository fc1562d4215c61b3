#!/usr/bin/env python3
"""
Vital Insights CLI.

Trend analysis and recommendations for vital sign readings.

Usage:
    vital-insights record --user alice --type blood_pressure --primary 128 --secondary 82
    vital-insights trend --user alice --type blood_pressure --days 30
    vital-insights generate --user alice --lookback-days 14 --dry-run
    vital-insights cleanup
"""

import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional

from .config import get_settings
from .db.database import HealthDatabase
from .exceptions import VitalInsightsError
from .models.recommendations import Priority, Recommendation, RecommendationStatus, RecommendationType
from .models.vital_signs import MeasurementMethod, ReadingContext
from .analysis.trends import TrendDirection
from .analysis.validation import WarningLevel
from .recommendations.generator import (
    ALL_RECOMMENDATION_TYPES,
    MAX_LOOKBACK_DAYS,
    MIN_LOOKBACK_DAYS,
    GenerationOptions,
)
from .services.engine import VitalInsightsEngine
from .services.generation_job import GenerationJob


# ANSI color codes
class Colors:
    RED = "\033[91m"
    YELLOW = "\033[93m"
    GREEN = "\033[92m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    RESET = "\033[0m"


def get_priority_color(priority: Priority) -> str:
    """Get color for recommendation priority."""
    colors = {
        Priority.LOW: Colors.BLUE,
        Priority.MEDIUM: Colors.YELLOW,
        Priority.HIGH: Colors.RED,
        Priority.CRITICAL: Colors.RED + Colors.BOLD,
    }
    return colors.get(priority, Colors.RESET)


def get_level_color(level: WarningLevel) -> str:
    colors = {
        WarningLevel.NORMAL: Colors.GREEN,
        WarningLevel.WARNING: Colors.YELLOW,
        WarningLevel.CRITICAL: Colors.RED,
    }
    return colors.get(level, Colors.RESET)


def format_direction(direction: TrendDirection) -> str:
    """Format trend direction with color."""
    if direction == TrendDirection.STABLE:
        color = Colors.GREEN
    elif direction == TrendDirection.VOLATILE:
        color = Colors.RED
    elif direction.is_directional:
        color = Colors.YELLOW
    else:
        color = Colors.BLUE
    return f"{color}{direction.value}{Colors.RESET}"


def header(title: str) -> None:
    print()
    print(f"{Colors.BOLD}Vital Insights - {title}{Colors.RESET}")
    print("=" * 40)
    print()


def print_recommendation(recommendation: Recommendation) -> None:
    color = get_priority_color(recommendation.priority)
    marker = " (action required)" if recommendation.action_required else ""
    print(
        f"  {color}[{recommendation.priority.value.upper()}]{Colors.RESET} "
        f"{Colors.BOLD}{recommendation.title}{Colors.RESET}{marker}"
    )
    print(f"    {recommendation.recommendation_type.value} | id {recommendation.id}")
    print(f"    {recommendation.message}")


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def range_int(low: int, high: int, label: str):
    """argparse type accepting integers within [low, high]."""
    def parse(value: str) -> int:
        number = int(value)
        if not low <= number <= high:
            raise argparse.ArgumentTypeError(f"{label} must be between {low} and {high}")
        return number
    return parse


def add_age_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--age", type=int, help="Age in years")
    group.add_argument(
        "--birth-date", type=date.fromisoformat, help="Birth date (YYYY-MM-DD); age is computed today"
    )


# =============================================================================
# Commands
# =============================================================================

def cmd_types(args, engine: VitalInsightsEngine) -> int:
    """List configured vital sign types."""
    header("Vital Sign Types")
    for vital_sign_type in engine.catalog.list_vital_sign_types():
        secondary = " (systolic/diastolic)" if vital_sign_type.has_secondary_value else ""
        print(f"  {Colors.BOLD}{vital_sign_type.name}{Colors.RESET}{secondary}")
        print(
            f"    normal {vital_sign_type.normal_range_min:g}-{vital_sign_type.normal_range_max:g} "
            f"{vital_sign_type.unit_primary}, warning {vital_sign_type.warning_range_min:g}-"
            f"{vital_sign_type.warning_range_max:g} {vital_sign_type.unit_primary}"
        )
    print()
    return 0


def _context(args, engine: VitalInsightsEngine) -> Optional[ReadingContext]:
    if args.birth_date is not None:
        return ReadingContext.from_birth_date(args.birth_date, engine.clock, args.medication)
    if args.age is None and not args.medication:
        return None
    return ReadingContext(age=args.age, medications=args.medication or [])


def cmd_validate(args, engine: VitalInsightsEngine) -> int:
    """Classify a reading without storing it."""
    result = engine.validate_reading(args.type, args.primary, args.secondary, _context(args, engine))
    if args.json:
        print_json(result.to_dict())
        return 0

    header("Reading Validation")
    color = get_level_color(result.warning_level)
    print(f"Level: {color}{result.warning_level.value}{Colors.RESET}")
    print(f"Flagged: {'yes' if result.is_flagged else 'no'}")
    if result.flag_reason:
        print(f"Reason: {result.flag_reason}")
    for adjustment in result.adjustments:
        print(f"  {Colors.CYAN}Adjusted:{Colors.RESET} {adjustment}")
    print()
    return 0


def cmd_record(args, engine: VitalInsightsEngine) -> int:
    """Store a new reading."""
    measurement, result = engine.record_measurement(
        args.user,
        args.type,
        args.primary,
        args.secondary,
        measured_at=args.at,
        measurement_method=MeasurementMethod(args.method),
        device_name=args.device,
        notes=args.notes,
        context=_context(args, engine),
    )
    color = get_level_color(result.warning_level)
    print(
        f"Recorded {measurement.display_value} for {args.user} "
        f"at {measurement.measured_at:%Y-%m-%d %H:%M} UTC: "
        f"{color}{result.warning_level.value}{Colors.RESET}"
    )
    if result.flag_reason:
        print(f"  {result.flag_reason}")
    return 0


def cmd_trend(args, engine: VitalInsightsEngine) -> int:
    """Show trend and pattern analysis for one type."""
    trend = engine.analyze_trend(args.user, args.type, args.days)
    patterns = engine.analyze_patterns(args.user, args.type, args.days)
    if args.json:
        print_json({"trend": trend.to_dict(), "patterns": patterns.to_dict()})
        return 0

    header(f"Trend ({args.type}, last {args.days} days)")
    print(f"Direction:  {format_direction(trend.direction)}")
    print(f"Readings:   {trend.sample_count}")
    if trend.has_data:
        print(f"Change:     {trend.percentage_change:+.1f}%")
        print(f"Slope:      {trend.slope:+.3f} per reading")
        print(f"R-squared:  {trend.r_squared:.3f}")
        print(f"Confidence: {trend.confidence:.2f}")
        print(f"Mean:       {trend.statistics.mean:.1f}")
    print()
    if patterns.insights:
        print(f"{Colors.BOLD}Patterns{Colors.RESET}")
        for insight in patterns.insights:
            print(f"  - {insight}")
        print()
    return 0


def cmd_progress(args, engine: VitalInsightsEngine) -> int:
    """Show a progress summary across every type."""
    summary = engine.get_progress_summary(args.user, args.days)
    if args.json:
        print_json(summary.to_dict())
        return 0

    header(f"Progress (last {args.days} days)")
    score = summary.health_score
    color = Colors.GREEN if score >= 80 else Colors.YELLOW if score >= 60 else Colors.RED
    print(f"Health score:          {color}{score}{Colors.RESET}")
    print(f"Readings:              {summary.total_records} ({summary.flagged_records} flagged)")
    print(f"Recording consistency: {summary.recording_consistency:.0f}%")
    print()
    for name, item in summary.types.items():
        print(
            f"  {name:<18} {item.record_count:>4} readings  "
            f"{format_direction(item.direction)}  latest {item.latest_value}"
        )
    print()
    return 0


def cmd_generate(args, engine: VitalInsightsEngine) -> int:
    """Generate recommendations for one subject or everyone with recent readings."""
    options = GenerationOptions(
        lookback_days=args.lookback_days,
        recommendation_types=args.types or list(ALL_RECOMMENDATION_TYPES),
        min_readings=args.min_readings,
        vital_sign_type_ids=args.vital_signs,
    )
    if args.dry_run and args.user:
        outcome = engine.run_generation(args.user, options, dry_run=True)
        if args.json:
            print_json(outcome.to_dict())
            return 0
        header("Recommendations (dry run)")
        for recommendation in outcome.candidates:
            print_recommendation(recommendation)
        print()
        print(f"{len(outcome.candidates)} recommendations would be created")
        return 0

    job = GenerationJob(engine, options, force=args.force, dry_run=args.dry_run)
    report = job.run(args.user)
    if args.json:
        print_json(report.to_dict())
        return 0 if not report.failed_subjects else 1

    header("Recommendation Generation" + (" (dry run)" if args.dry_run else ""))
    print(f"Subjects processed: {report.processed_subjects}")
    print(f"Candidates:         {report.total_candidates}")
    print(f"Created:            {report.total_created}")
    if report.failed_subjects:
        print(f"{Colors.RED}Failed subjects: {', '.join(report.failed_subjects)}{Colors.RESET}")
        return 1
    print()
    return 0


def cmd_recommendations(args, engine: VitalInsightsEngine) -> int:
    """List a subject's recommendations."""
    page = engine.list_recommendations(
        args.user,
        recommendation_type=RecommendationType(args.type) if args.type else None,
        status=RecommendationStatus(args.status) if args.status else None,
        page=args.page,
        page_size=args.page_size,
    )
    if args.json:
        print_json(page.to_dict())
        return 0

    header(f"Recommendations for {args.user}")
    if not page.items:
        print("No recommendations found.")
    for recommendation in page.items:
        print_recommendation(recommendation)
    print()
    print(f"Page {page.page} of {max(page.pages, 1)} ({page.total} total)")
    return 0


def cmd_read(args, engine: VitalInsightsEngine) -> int:
    recommendation = engine.mark_recommendation_read(args.id)
    print(f"Marked '{recommendation.title}' as read")
    return 0


def cmd_dismiss(args, engine: VitalInsightsEngine) -> int:
    recommendation = engine.dismiss_recommendation(args.id, args.reason)
    print(f"Dismissed '{recommendation.title}'")
    return 0


def cmd_cleanup(args, engine: VitalInsightsEngine) -> int:
    """Expire stale recommendations and purge old ones."""
    report = engine.cleanup_recommendations(args.user)
    if args.json:
        print_json(report.to_dict())
        return 0 if report.success else 1

    header("Recommendation Cleanup")
    for result in report.results:
        if result.success:
            print(f"  {result.category:<10} {result.records_affected} records")
        else:
            print(f"  {Colors.RED}{result.category:<10} failed: {result.error}{Colors.RESET}")
    print()
    print(f"Total affected: {report.total_affected}")
    return 0 if report.success else 1


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Vital Insights - vital sign trend analysis and recommendations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vital-insights record --user alice --type heart_rate --primary 72
  vital-insights validate --type heart_rate --primary 105 --age 15
  vital-insights trend --user alice --type blood_pressure --days 30
  vital-insights generate --user alice --types health_alert goal_progress
  vital-insights generate --lookback-days 14 --force
  vital-insights cleanup
        """,
    )
    parser.add_argument("--db-path", type=Path, help="SQLite database file (overrides settings)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Types command
    subparsers.add_parser("types", help="List vital sign types")

    # Validate command
    validate_p = subparsers.add_parser("validate", help="Classify a reading without storing it")
    validate_p.add_argument("--type", "-t", required=True, help="Vital sign type id or name")
    validate_p.add_argument("--primary", type=float, required=True, help="Primary value")
    validate_p.add_argument("--secondary", type=float, help="Secondary value (diastolic)")
    add_age_arguments(validate_p)
    validate_p.add_argument(
        "--medication", "-m", action="append", default=[],
        help="Active medication (repeatable)",
    )

    # Record command
    record_p = subparsers.add_parser("record", help="Store a reading")
    record_p.add_argument("--user", "-u", required=True, help="Subject id")
    record_p.add_argument("--type", "-t", required=True, help="Vital sign type id or name")
    record_p.add_argument("--primary", type=float, required=True, help="Primary value")
    record_p.add_argument("--secondary", type=float, help="Secondary value (diastolic)")
    record_p.add_argument(
        "--at", type=datetime.fromisoformat, help="ISO-8601 time of the reading (default: now)"
    )
    record_p.add_argument(
        "--method",
        choices=[m.value for m in MeasurementMethod],
        default=MeasurementMethod.MANUAL.value,
        help="How the reading was taken",
    )
    record_p.add_argument("--device", help="Device name")
    record_p.add_argument("--notes", help="Free-text notes")
    add_age_arguments(record_p)
    record_p.add_argument("--medication", "-m", action="append", default=[])

    # Trend command
    trend_p = subparsers.add_parser("trend", help="Show trend and patterns for a type")
    trend_p.add_argument("--user", "-u", required=True, help="Subject id")
    trend_p.add_argument("--type", "-t", required=True, help="Vital sign type id or name")
    trend_p.add_argument(
        "--days", "-d", type=int, default=settings.default_lookback_days,
        help="Number of days to analyze",
    )

    # Progress command
    progress_p = subparsers.add_parser("progress", help="Show a progress summary")
    progress_p.add_argument("--user", "-u", required=True, help="Subject id")
    progress_p.add_argument("--days", "-d", type=int, default=30, help="Number of days")

    # Generate command
    generate_p = subparsers.add_parser("generate", help="Generate recommendations")
    generate_p.add_argument("--user", "-u", help="Only this subject (default: everyone)")
    generate_p.add_argument(
        "--lookback-days",
        type=range_int(MIN_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS, "Lookback days"),
        default=settings.default_lookback_days,
        help="Days of readings to analyze (1-365)",
    )
    generate_p.add_argument(
        "--min-readings",
        type=range_int(1, 50, "Minimum readings"),
        default=settings.min_readings,
        help="Minimum readings per type (1-50)",
    )
    generate_p.add_argument(
        "--types",
        nargs="+",
        choices=[t.value for t in ALL_RECOMMENDATION_TYPES],
        help="Recommendation types to generate",
    )
    generate_p.add_argument(
        "--vital-signs", nargs="+", help="Vital sign type ids to analyze (default: all)"
    )
    generate_p.add_argument("--dry-run", action="store_true", help="Do not persist anything")
    generate_p.add_argument(
        "--force", action="store_true",
        help="Dismiss active recommendations older than 30 days first",
    )

    # Recommendations command
    recs_p = subparsers.add_parser("recommendations", help="List recommendations")
    recs_p.add_argument("--user", "-u", required=True, help="Subject id")
    recs_p.add_argument("--type", choices=[t.value for t in RecommendationType])
    recs_p.add_argument("--status", choices=[s.value for s in RecommendationStatus])
    recs_p.add_argument("--page", type=int, default=1)
    recs_p.add_argument("--page-size", type=int, default=20)

    # Read / dismiss commands
    read_p = subparsers.add_parser("read", help="Mark a recommendation as read")
    read_p.add_argument("id", help="Recommendation id")
    dismiss_p = subparsers.add_parser("dismiss", help="Dismiss a recommendation")
    dismiss_p.add_argument("id", help="Recommendation id")
    dismiss_p.add_argument("--reason", help="Dismissal reason")

    # Cleanup command
    cleanup_p = subparsers.add_parser("cleanup", help="Expire and purge old recommendations")
    cleanup_p.add_argument("--user", "-u", help="Only this subject (default: everyone)")

    return parser


COMMANDS = {
    "types": cmd_types,
    "validate": cmd_validate,
    "record": cmd_record,
    "trend": cmd_trend,
    "progress": cmd_progress,
    "generate": cmd_generate,
    "recommendations": cmd_recommendations,
    "read": cmd_read,
    "dismiss": cmd_dismiss,
    "cleanup": cmd_cleanup,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    if args.db_path is not None:
        settings = settings.model_copy(update={"db_path": args.db_path})

    try:
        engine = VitalInsightsEngine(store=HealthDatabase(settings.db_path), settings=settings)
        return handler(args, engine)
    except VitalInsightsError as e:
        print(f"{Colors.RED}Error: {e.message}{Colors.RESET}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
