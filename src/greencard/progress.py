# src/greencard/progress.py
"""
Progress re-anchoring: recompute remaining time per stage from recorded milestones.

Approved stages contribute nothing, filed stages count down from their filed
date, and untouched stages keep their full estimate. Concurrent stages are
bounded by the stage they run alongside rather than added to it. Once any
green-card stage has progress, the timeline is measured forward from "now".
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .bulletin import BulletinData
from .dates import months_between
from .empirical_params import MIN_PD_AGING_MONTHS, QUEUE_CATEGORIES
from .models import (
    BulletinChart, ComposedPath, ComposedStage, Duration, ProgressRecord, StageProgress,
    StageStatus, VelocityResult
)
from .templates import ADJUSTMENT_STAGE, stage_definition
from .velocity import VelocityModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReanchoredPath:
    """A composed path re-based on recorded progress."""
    path: ComposedPath
    remaining_months: Dict[str, float]
    total_remaining_months: float
    anchored_to_now: bool
    effective_priority_date: Optional[date] = None
    priority_date_source: Optional[str] = None

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for stage in self.path.gc_stages:
            rows.append({
                'stage_id': stage.stage_id,
                'label': stage.label,
                'start_months': round(stage.start_months, 2),
                'remaining_months': round(self.remaining_months.get(stage.stage_id, 0.0), 2),
                'resolved': stage.resolved,
                'note': stage.note,
            })
        return pd.DataFrame(rows)


def remaining_range(duration: Duration, filed_date: Optional[date], now: date) -> Tuple[float, float]:
    """
    Remaining (min, max) months of a stage filed on filed_date.

    A future filed date counts as zero elapsed; elapsed time beyond the
    range clamps to zero rather than going negative.
    """
    elapsed = max(0.0, months_between(filed_date, now)) if filed_date else 0.0
    return max(0.0, duration.min_months - elapsed), max(0.0, duration.max_months - elapsed)


def stage_remaining(duration: Duration, progress: StageProgress, now: date) -> Tuple[float, float]:
    if progress.status == StageStatus.APPROVED:
        return 0.0, 0.0
    if progress.status == StageStatus.FILED and progress.filed_date is not None:
        return remaining_range(duration, progress.filed_date, now)
    return duration.min_months, duration.max_months


def effective_priority_date(path: ComposedPath, progress: ProgressRecord) -> Tuple[Optional[date], Optional[str]]:
    """
    Earliest of the ported priority date and any date set by an approved PD-bearing stage.

    Returns:
        (priority date, source) where source is "ported" or a stage id; (None, None) when neither exists
    """
    candidates = []
    if progress.ported_priority_date is not None:
        candidates.append((progress.ported_priority_date, "ported"))

    for stage in path.gc_stages:
        if not stage_definition(stage.stage_id).establishes_priority_date:
            continue
        entry = progress.get(stage.stage_id)
        if entry.status != StageStatus.APPROVED:
            continue
        established = entry.priority_date or entry.filed_date
        if established is not None:
            candidates.append((established, stage.stage_id))

    if not candidates:
        return None, None
    return min(candidates, key=lambda c: c[0])


class _QueueLookup:
    """Recomputes queue waits for the effective priority date."""

    def __init__(self, path: ComposedPath, priority_date: Optional[date],
                 velocity_model: Optional[VelocityModel], bulletin: Optional[BulletinData]):
        self.enabled = (
            priority_date is not None and velocity_model is not None and bulletin is not None
            and path.bulletin_category in QUEUE_CATEGORIES and path.country is not None
        )
        self.path = path
        self.priority_date = priority_date
        self.velocity_model = velocity_model
        self.bulletin = bulletin

    def wait(self, chart: BulletinChart) -> Optional[VelocityResult]:
        if not self.enabled:
            return None
        cell = self.bulletin.cell(self.path.bulletin_category, self.path.country, chart)
        if cell is None:
            return None
        return self.velocity_model.estimate_wait(self.priority_date, cell, self.path.country,
                                                 self.path.bulletin_category)


def _walk(stages: List[ComposedStage], progress: ProgressRecord, now: date, base: float,
          filing: Optional[VelocityResult], final: Optional[VelocityResult], use_min: bool):
    """One pass over the green-card stages: (start, remaining, resolved) per stage and the end cursor."""
    results = []
    cursor = base
    previous_start = base
    final_target = None
    if final is not None and progress.get(ADJUSTMENT_STAGE).status != StageStatus.APPROVED:
        final_target = final.range_min if use_min else final.estimated_months

    for i, stage in enumerate(stages):
        entry = progress.get(stage.stage_id)
        start = previous_start if (stage.concurrent and i > 0) else cursor
        resolved = False

        if stage.is_queue_wait and (entry.status == StageStatus.APPROVED
                                    or any(progress.get(s.stage_id).has_progress for s in stages[i + 1:])):
            # A later stage already filed means the wait is behind us
            remaining = 0.0
            resolved = True
        elif stage.is_queue_wait and filing is not None:
            target = filing.range_min if use_min else filing.estimated_months
            remaining = max(0.0, target - start)
            resolved = filing.is_current
        elif stage.stage_id == ADJUSTMENT_STAGE and final_target is not None:
            low, high = stage_remaining(stage.base_duration or stage.duration, entry, now)
            processing = low if use_min else high
            remaining = max(processing, final_target - start)
        elif stage.is_marker and final_target is not None:
            start = max(start, final_target)
            remaining = 0.0
        else:
            low, high = stage_remaining(stage.duration, entry, now)
            remaining = low if use_min else high

        results.append((start, remaining, resolved))
        previous_start = start
        cursor = max(cursor, start + remaining)
    return results, cursor


def reanchor(
    path: ComposedPath,
    progress: ProgressRecord,
    now: date,
    velocity_model: Optional[VelocityModel] = None,
    bulletin: Optional[BulletinData] = None
) -> ReanchoredPath:
    """
    Re-base a composed path on recorded progress.

    Args:
        path: Path produced by the composer
        progress: Recorded milestones and ported priority date
        now: Reference date for elapsed time
        velocity_model: Used with bulletin to recompute open queue waits
        bulletin: Current bulletin snapshot

    Returns:
        ReanchoredPath whose green-card stages carry remaining durations
    """
    stage_ids = {s.stage_id for s in path.stages}
    for stage_id in progress.stages:
        if stage_id not in stage_ids:
            logger.warning(f"Ignoring progress for unknown stage {stage_id!r} on path {path.path_id}")

    gc_stages = path.gc_stages
    anchored = any(progress.get(s.stage_id).has_progress for s in gc_stages)
    if anchored:
        base = 0.0
    else:
        base = min((s.start_months for s in gc_stages), default=0.0)

    priority_date, source = effective_priority_date(path, progress)
    queue = _QueueLookup(path, priority_date, velocity_model, bulletin)
    filing = queue.wait(BulletinChart.DATES_FOR_FILING)
    final = queue.wait(BulletinChart.FINAL_ACTION)

    max_pass, total_max = _walk(gc_stages, progress, now, base, filing, final, use_min=False)
    min_pass, total_min = _walk(gc_stages, progress, now, base, filing, final, use_min=True)

    remaining_months = {}
    rebased = []
    for stage, (start, remaining, resolved), (_, remaining_min, _) in zip(gc_stages, max_pass, min_pass):
        remaining_months[stage.stage_id] = remaining
        note = stage.note
        if resolved:
            note = "Priority date is current"
        if stage.is_marker:
            start = total_max
        rebased.append(replace(
            stage,
            start_months=start,
            duration=stage.duration if stage.is_marker else Duration(min(remaining_min, remaining), remaining),
            resolved=resolved,
            note=note,
        ))

    total = Duration(min(total_min, total_max), total_max)
    new_path = replace(
        path,
        stages=tuple(path.status_stages + rebased),
        total=replace(total, display=f"{total.min_months / 12:.1f}-{total.max_months / 12:.1f} yr"),
        priority_date=priority_date or path.priority_date,
    )

    logger.debug(f"Re-anchored {path.path_id}: anchored_to_now={anchored}, remaining={total_max:.1f} months")
    return ReanchoredPath(
        path=new_path,
        remaining_months=remaining_months,
        total_remaining_months=total_max,
        anchored_to_now=anchored,
        effective_priority_date=priority_date,
        priority_date_source=source,
    )


def priority_date_aging(path: ComposedPath, progress: ProgressRecord, now: date) -> Optional[float]:
    """
    Months a ported priority date keeps aging before I-485 can be filed.

    Only reported when a ported date exists and the benefit is at least six months.
    """
    if progress.ported_priority_date is None:
        return None
    reanchored = reanchor(path, progress, now)
    i485 = reanchored.path.stage(ADJUSTMENT_STAGE)
    if i485 is None:
        return None
    months = i485.start_months
    if months < MIN_PD_AGING_MONTHS:
        return None
    return round(months, 1)
