# src/greencard/cli.py
"""
Command-line interface for green-card path forecasting.
Subcommands:
  paths     compose every eligible path for a profile
  track     build the remaining timeline of one tracked case
  progress  re-anchor composed paths on recorded progress
"""
import argparse
import logging
import sys
import time  # For measuring total runtime
from datetime import date
from typing import List, Optional

from .bulletin import DEFAULT_BULLETIN, BulletinData
from .composer import generate_paths
from .dates import parse_iso_date
from .models import ComposedPath, ForecastConfig, Profile, ProgressRecord, TrackedCase
from .path_summary import (
    generate_path_summaries, print_path_summary_table, print_reanchored_table, print_stage_table
)
from .processing_times import DEFAULT_PROCESSING_TIMES, ProcessingTimes, StageDurationResolver
from .progress import priority_date_aging, reanchor
from .tracker import apply_case_to_profile, build_tracked_case_path
from .utils import load_json, save_paths_csv
from .velocity import VelocityModel


logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(levelname)s:%(name)s:%(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Suppress other verbose libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def create_config_from_args(args) -> ForecastConfig:
    """Create ForecastConfig from command line arguments."""
    as_of = parse_iso_date(args.as_of) if args.as_of else date.today()
    if as_of is None:
        raise ValueError(f"Invalid --as-of date: {args.as_of!r} (expected YYYY-MM-DD)")
    return ForecastConfig(
        as_of=as_of,
        max_data_age_days=args.max_data_age_days,
        output_path=args.output,
        debug=args.debug,
    )


def load_processing_times(path: Optional[str]) -> ProcessingTimes:
    if not path:
        return DEFAULT_PROCESSING_TIMES
    data = load_json(path)
    return ProcessingTimes.from_dict(data) if data else DEFAULT_PROCESSING_TIMES


def load_bulletin(path: Optional[str]) -> BulletinData:
    if not path:
        return DEFAULT_BULLETIN
    data = load_json(path)
    return BulletinData.from_dict(data) if data else DEFAULT_BULLETIN


def load_profile(args) -> Profile:
    data = load_json(args.profile) if args.profile else {}
    profile = Profile.from_dict(data)
    if getattr(args, 'case', None):
        case = TrackedCase.from_dict(load_json(args.case))
        profile = apply_case_to_profile(profile, case)
        logger.info(f"Applied tracked case {case.name!r} to profile")
    return profile


def compose_for_args(args, config: ForecastConfig) -> List[ComposedPath]:
    resolver = StageDurationResolver(
        load_processing_times(args.processing_times),
        as_of=config.as_of,
        max_data_age_days=config.max_data_age_days,
    )
    return generate_paths(
        load_profile(args),
        duration_resolver=resolver,
        velocity_model=VelocityModel(),
        bulletin=load_bulletin(args.bulletin),
        config=config,
    )


def run_paths(args, config: ForecastConfig) -> None:
    """Compose and print every eligible path for a profile."""
    t0 = time.perf_counter()
    paths = compose_for_args(args, config)
    elapsed = time.perf_counter() - t0
    print(f"\nComposition runtime: {elapsed:0.3f} seconds")

    print_path_summary_table(generate_path_summaries(paths), args.profile or "default profile")
    for path in paths[:args.show_stages]:
        print_stage_table(path)

    if paths:
        save_paths_csv(paths, config.output_path)


def run_track(args, config: ForecastConfig) -> None:
    """Build and print the timeline of a tracked case."""
    case = TrackedCase.from_dict(load_json(args.case))
    resolver = StageDurationResolver(
        load_processing_times(args.processing_times),
        as_of=config.as_of,
        max_data_age_days=config.max_data_age_days,
    )
    path = build_tracked_case_path(case, resolver, VelocityModel(), load_bulletin(args.bulletin), config.as_of)
    print_stage_table(path)
    save_paths_csv([path], config.output_path)


def run_progress(args, config: ForecastConfig) -> None:
    """Re-anchor composed paths on recorded progress."""
    progress = ProgressRecord.from_dict(load_json(args.progress))
    paths = compose_for_args(args, config)
    if args.path_id:
        paths = [p for p in paths if p.path_id == args.path_id]
        if not paths:
            logger.warning(f"No eligible path with id {args.path_id!r}")
            return

    velocity_model = VelocityModel()
    bulletin = load_bulletin(args.bulletin)
    for path in paths:
        reanchored = reanchor(path, progress, config.as_of, velocity_model, bulletin)
        print_reanchored_table(reanchored)
        aging = priority_date_aging(path, progress, config.as_of)
        if aging is not None:
            print(f"Your ported priority date will age ~{aging:.0f} months before I-485 filing")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Green Card Path Forecast - personalized pathways and timeline estimates",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--processing-times', type=str, help='Processing times JSON snapshot')
    common.add_argument('--bulletin', type=str, help='Visa bulletin JSON snapshot')
    common.add_argument('--as-of', '--now', dest='as_of', type=str, help='Reference date YYYY-MM-DD (default: today)')
    common.add_argument('--max-data-age-days', type=int, default=90, help='Ignore processing times older than this')
    common.add_argument('--output', type=str, default='data/paths.csv', help='Output CSV path')
    common.add_argument('--debug', action='store_true', help='Enable debug output')

    subparsers = parser.add_subparsers(dest='command', required=True)

    paths_parser = subparsers.add_parser('paths', parents=[common], help='Compose all eligible paths')
    paths_parser.add_argument('--profile', type=str, help='Profile JSON')
    paths_parser.add_argument('--case', type=str, help='Tracked case JSON to carry into the profile')
    paths_parser.add_argument('--show-stages', type=int, default=3, help='Print stage tables for the N fastest paths')

    track_parser = subparsers.add_parser('track', parents=[common], help='Timeline for a tracked case')
    track_parser.add_argument('--case', type=str, required=True, help='Tracked case JSON')

    progress_parser = subparsers.add_parser('progress', parents=[common], help='Re-anchor paths on recorded progress')
    progress_parser.add_argument('--profile', type=str, help='Profile JSON')
    progress_parser.add_argument('--progress', type=str, required=True, help='Progress JSON')
    progress_parser.add_argument('--path-id', type=str, help='Only re-anchor this path')

    return parser


COMMANDS = {
    'paths': run_paths,
    'track': run_track,
    'progress': run_progress,
}


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    # SCRIPT TIMING START
    script_start_time = time.perf_counter()

    setup_logging(args.debug)

    try:
        config = create_config_from_args(args)

        print("\n" + "="*80)
        print("GREEN CARD PATH FORECAST")
        print("="*80)
        print(f"Command: {args.command}")
        print(f"As of: {config.as_of.isoformat()}")
        print(f"Processing times: {args.processing_times or 'built-in snapshot'}")
        print(f"Visa bulletin: {args.bulletin or 'built-in snapshot'}")
        print("="*80)

        COMMANDS[args.command](args, config)

        logger.info("Forecast completed successfully!")

    except Exception as e:
        logger.error(f"Forecast failed: {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    # SCRIPT TIMING END
    total_script_time = time.perf_counter() - script_start_time
    print(f"\nTotal script runtime: {total_script_time:.3f} seconds")


if __name__ == '__main__':
    main()
