# src/greencard/path_summary.py
"""
Console summaries for composed paths.
Provides structured, readable tables of paths and their stages.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .models import ComposedPath
from .progress import ReanchoredPath

logger = logging.getLogger(__name__)


@dataclass
class PathSummary:
    """One-line summary of a composed path."""
    rank: int
    path_id: str
    name: str
    gc_category: str
    min_years: float
    max_years: float
    estimated_cost: int
    stage_count: int
    has_lottery: bool
    is_self_petition: bool
    queue_wait_months: float
    priority_date: Optional[str]


def generate_path_summaries(paths: List[ComposedPath]) -> List[PathSummary]:
    """
    Generate summaries for composed paths, in the order given.

    Args:
        paths: Composed paths (normally sorted fastest first)

    Returns:
        List of PathSummary objects, one per path
    """
    summaries = []

    for rank, path in enumerate(paths, start=1):
        queue_wait = sum(s.duration.max_months for s in path.stages if s.is_queue_wait)

        summaries.append(PathSummary(
            rank=rank,
            path_id=path.path_id,
            name=path.name,
            gc_category=path.gc_category,
            min_years=path.total.min_months / 12,
            max_years=path.total.max_months / 12,
            estimated_cost=path.estimated_cost,
            stage_count=len([s for s in path.stages if not s.is_marker]),
            has_lottery=path.has_lottery,
            is_self_petition=path.is_self_petition,
            queue_wait_months=queue_wait,
            priority_date=path.priority_date.isoformat() if path.priority_date else None,
        ))

    return summaries


def print_path_summary_table(summaries: List[PathSummary], title: str = ""):
    """
    Print a path summary table to console.

    Args:
        summaries: List of path summaries
        title: Optional table title suffix
    """
    if not summaries:
        print("\nNo eligible paths for this profile.")
        return

    heading = f"GREEN CARD PATHS: {title.upper()}" if title else "GREEN CARD PATHS"
    print()
    print("=" * 120)
    print(heading)
    print("=" * 120)

    header = (f"{'#':>3} | {'Path':<44} | {'Category':<16} | {'Years':>11} | {'Queue':>7} | "
              f"{'Cost':>8} | {'Lottery':>7} | {'Self':>4}")
    print(header)
    print("-" * 120)

    for s in summaries:
        years = f"{s.min_years:.1f}-{s.max_years:.1f}"
        row = (f"{s.rank:3d} | {s.name[:44]:<44} | {s.gc_category[:16]:<16} | {years:>11} | "
               f"{s.queue_wait_months:7.1f} | ${s.estimated_cost:7,d} | {'yes' if s.has_lottery else 'no':>7} | "
               f"{'yes' if s.is_self_petition else 'no':>4}")
        print(row)

    print("-" * 120)
    print("Columns: Rank | Path | Green Card Category | Total Years (min-max) | Queue Wait (months) | "
          "Filing Fees | H-1B Lottery | Self-Petition")
    print("=" * 120)


def print_stage_table(path: ComposedPath):
    """Print the stages of one path with their offsets in months."""
    print()
    print("=" * 110)
    print(f"{path.name} ({path.gc_category}) - total {path.total.display}")
    if path.priority_date:
        print(f"Priority date: {path.priority_date.isoformat()}")
    print("=" * 110)

    print(f"{'Track':<6} | {'Stage':<28} | {'Start':>6} | {'Duration':>14} | Note")
    print("-" * 110)
    for stage in path.stages:
        flag = "+" if stage.concurrent else " "
        print(f"{stage.track.value:<6} | {flag}{stage.label[:27]:<27} | {stage.start_months:6.1f} | "
              f"{stage.duration.display:>14} | {stage.note}")
    print("=" * 110)


def print_reanchored_table(reanchored: ReanchoredPath):
    """Print remaining time per green-card stage after applying progress."""
    path = reanchored.path
    print()
    print("=" * 90)
    print(f"REMAINING: {path.name}")
    if reanchored.effective_priority_date:
        print(f"Effective priority date: {reanchored.effective_priority_date.isoformat()} "
              f"({reanchored.priority_date_source})")
    basis = "from today" if reanchored.anchored_to_now else "from the original plan"
    print(f"Timeline measured {basis}")
    print("=" * 90)

    print(f"{'Stage':<30} | {'Start':>6} | {'Remaining':>9} | Note")
    print("-" * 90)
    for stage in path.gc_stages:
        remaining = reanchored.remaining_months.get(stage.stage_id, 0.0)
        label = f"{stage.label} (done)" if stage.resolved else stage.label
        print(f"{label[:30]:<30} | {stage.start_months:6.1f} | {remaining:9.1f} | {stage.note}")

    print("-" * 90)
    print(f"Total remaining: {reanchored.total_remaining_months:.1f} months "
          f"({reanchored.total_remaining_months / 12:.1f} years)")
    print("=" * 90)
