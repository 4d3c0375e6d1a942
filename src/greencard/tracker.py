# src/greencard/tracker.py
"""
Tracked-case builder: a timeline for one real case with explicit milestone dates.

Produces the same ComposedPath shape as the generic composer. Offsets are
months from "now"; only the work that remains is emitted. Missing upstream
dates (PERM filing when PWD or recruitment is still open) are projected so
the queue wait always has a priority date to work from.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional, Tuple

from .bulletin import BulletinData
from .composer import PlannedStage, estimate_filing_cost, schedule
from .dates import add_months, format_month_year
from .empirical_params import PREMIUM_PROCESSING_FEE, RECRUITMENT_MONTHS
from .models import (
    BulletinChart, CaseRoute, ComposedPath, ComposedStage, Duration, EBCategory, Profile,
    StageKind, TrackedCase, Track, VelocityResult
)
from .processing_times import DurationContext, StageDurationResolver
from .progress import remaining_range
from .templates import ADJUSTMENT_STAGE, GREEN_CARD_STAGE, PRIORITY_WAIT_STAGE, stage_definition
from .velocity import VelocityModel

logger = logging.getLogger(__name__)

_PETITION_STAGE_BY_ROUTE = {
    CaseRoute.PERM: "i140",
    CaseRoute.NIW: "eb2niw",
    CaseRoute.EB1: "eb1",
}


def case_bulletin_category(case: TrackedCase) -> EBCategory:
    """Queue category for a case; NIW shares the EB-2 queue."""
    if case.route == CaseRoute.EB1 or case.category == EBCategory.EB1:
        return EBCategory.EB1
    if case.category == EBCategory.EB3:
        return EBCategory.EB3
    return EBCategory.EB2


def case_gc_category(case: TrackedCase) -> str:
    if case.route == CaseRoute.EB1:
        return "EB-1"
    if case.route == CaseRoute.NIW:
        return "EB-2 NIW"
    return case_bulletin_category(case).value


def case_priority_date(case: TrackedCase) -> Optional[date]:
    """Priority date already established by the case, if any."""
    return case.perm_filed_date or case.i140_filed_date


def _remaining(duration: Duration, filed: Optional[date], completed: Optional[date], now: date) -> Duration:
    if completed is not None:
        return Duration.zero()
    return Duration(*remaining_range(duration, filed, now))


def _done_path(case: TrackedCase) -> ComposedPath:
    marker = ComposedStage(
        stage_id=GREEN_CARD_STAGE,
        label=stage_definition(GREEN_CARD_STAGE).label,
        track=Track.GC,
        kind=StageKind.MARKER,
        duration=Duration(0.0, 0.0, "Done!"),
        start_months=0.0,
        note="Green card approved",
        resolved=True,
    )
    return ComposedPath(
        path_id=f"tracked_{case.route.value}",
        name=case.name,
        description="Your tracked case (approved).",
        gc_category=case_gc_category(case),
        stages=(marker,),
        total=Duration(0.0, 0.0, "Done!"),
        is_self_petition=case.route != CaseRoute.PERM,
        bulletin_category=case_bulletin_category(case),
        country=case.country_of_birth,
        priority_date=case_priority_date(case),
    )


def _queue_waits(
    case: TrackedCase,
    priority_date: date,
    velocity_model: VelocityModel,
    bulletin: Optional[BulletinData]
) -> Tuple[Optional[VelocityResult], Optional[VelocityResult], str]:
    """Dates for Filing and Final Action waits from now, plus the filing cutoff label."""
    if bulletin is None:
        return None, None, "Current"
    category = case_bulletin_category(case)
    filing_cell = bulletin.cell(category, case.country_of_birth, BulletinChart.DATES_FOR_FILING)
    final_cell = bulletin.cell(category, case.country_of_birth, BulletinChart.FINAL_ACTION)
    filing = velocity_model.estimate_wait(priority_date, filing_cell, case.country_of_birth, category)
    final = velocity_model.estimate_wait(priority_date, final_cell, case.country_of_birth, category)
    return filing, final, filing_cell or "Current"


def _processing_note(resolver: StageDurationResolver, stage_id: str, audited: bool, fallback: str) -> str:
    label = resolver.currently_processing(stage_id, audited)
    return f"DOL currently processing: {label}" if label else fallback


def build_tracked_case_path(
    case: TrackedCase,
    duration_resolver: StageDurationResolver,
    velocity_model: VelocityModel,
    bulletin: Optional[BulletinData],
    now: date
) -> ComposedPath:
    """
    Build the remaining timeline for a tracked case.

    Args:
        case: Milestone dates of the case
        duration_resolver: Stage durations (live or static)
        velocity_model: Queue wait model
        bulletin: Current bulletin, or None to skip queue waits
        now: Reference date; offsets are months from here

    Returns:
        ComposedPath with only the stages still ahead, or a "Done!" path once I-485 is approved
    """
    if case.i485_approved_date is not None:
        logger.info(f"Case {case.name!r} is approved; nothing remaining")
        return _done_path(case)

    is_perm = case.route == CaseRoute.PERM
    petition_id = _PETITION_STAGE_BY_ROUTE[case.route]

    pwd = _remaining(duration_resolver.resolve_duration("pwd"), case.pwd_filed_date, case.pwd_issued_date, now)
    # Recruitment is complete once PERM is filed
    recruit = _remaining(Duration(*RECRUITMENT_MONTHS), case.recruitment_start_date, case.perm_filed_date, now)
    perm = _remaining(
        duration_resolver.resolve_duration("perm", DurationContext(perm_audited=case.perm_likely_audited)),
        case.perm_filed_date, case.perm_approved_date, now
    )
    petition = _remaining(
        duration_resolver.resolve_duration(petition_id, DurationContext(premium=case.i140_premium)),
        case.i140_filed_date, case.i140_approved_date, now
    )
    i485 = _remaining(duration_resolver.resolve_duration(ADJUSTMENT_STAGE), case.i485_filed_date, None, now)

    # Priority date: established, else projected PERM filing, else today
    months_to_perm_file = 0.0
    if is_perm and case.perm_filed_date is None:
        months_to_perm_file = pwd.max_months + recruit.max_months
    priority_date = case_priority_date(case)
    if priority_date is None:
        priority_date = add_months(now, months_to_perm_file) if is_perm else now
        logger.debug(f"Projected priority date {priority_date} for case {case.name!r}")

    filing, final, filing_cutoff = _queue_waits(case, priority_date, velocity_model, bulletin)

    planned: List[PlannedStage] = []
    if is_perm and case.perm_approved_date is None and case.i140_filed_date is None:
        if case.perm_filed_date is None:
            if case.pwd_issued_date is None and pwd.max_months > 0:
                planned.append(PlannedStage(
                    stage_definition("pwd"), pwd,
                    note=_processing_note(duration_resolver, "pwd", False, "Prevailing wage determination"),
                ))
            if recruit.max_months > 0:
                planned.append(PlannedStage(stage_definition("recruit"), recruit,
                                            note="Recruitment / quiet period before PERM filing"))
        if perm.max_months > 0:
            note = ("PERM filed. Visa bulletin movement continues while DOL adjudicates."
                    if case.perm_filed_date else
                    _processing_note(duration_resolver, "perm", case.perm_likely_audited, "Labor certification"))
            planned.append(PlannedStage(stage_definition("perm"), perm, note=note,
                                        priority_date=priority_date))

    petition_filed_at = 0.0
    if case.i140_filed_date is None:
        petition_filed_at = max((end for _, end in schedule(planned, 0.0)), default=0.0)

    # I-485 can be filed alongside the petition unless Dates for Filing blocks it
    i485_concurrent = False
    if case.i140_approved_date is None and petition.max_months > 0:
        planned.append(PlannedStage(
            stage_definition(petition_id), petition,
            note="Premium processing selected (estimate)" if case.i140_premium else "Regular processing (estimate)",
            priority_date=None if is_perm else priority_date,
        ))
        i485_concurrent = True

    if case.i485_filed_date is None and filing is not None and filing.estimated_months > petition_filed_at:
        slots = schedule(planned, 0.0)
        blocked_until = max((end for _, end in slots), default=0.0)
        if filing.estimated_months > blocked_until:
            planned.append(PlannedStage(
                stage_definition(PRIORITY_WAIT_STAGE),
                Duration(0.0, round(filing.estimated_months - blocked_until, 2)),
                note=f"Wait until you can file I-485 (Dates for Filing). Current cutoff: {filing_cutoff}.",
                velocity=filing,
                priority_date=priority_date,
            ))
        i485_concurrent = False

    if case.i485_filed_date is not None:
        i485_note = "I-485 pending. EAD/AP typically available while pending."
    else:
        i485_note = "I-485 processing (estimate)."
    not_before = (0.0, 0.0)
    if filing is not None and case.i485_filed_date is None and not i485_concurrent:
        not_before = (filing.range_min, filing.estimated_months)
    i485_stage = PlannedStage(stage_definition(ADJUSTMENT_STAGE), i485, concurrent=i485_concurrent,
                              note=i485_note, not_before=not_before)
    planned.append(i485_stage)

    # Final Action lag keeps I-485 pending
    i485_start, i485_end = schedule(planned, 0.0)[-1]
    if final is not None and final.estimated_months > i485_end:
        i485_min_start = schedule(planned, 0.0, use_min=True)[-1][0]
        pending_max = max(final.estimated_months - i485_start, i485.max_months)
        pending_min = min(max(i485.min_months, final.range_min - i485_min_start), pending_max)
        planned[-1] = replace(
            i485_stage,
            duration=Duration(pending_min, pending_max),
            note=(f"I-485 pending while waiting for Final Action to reach {format_month_year(priority_date)}. "
                  f"EAD/AP typically available while pending."),
            velocity=final,
            base_duration=i485,
        )

    marker_not_before = (final.range_min, final.estimated_months) if final is not None else (0.0, 0.0)
    planned.append(PlannedStage(stage_definition(GREEN_CARD_STAGE), Duration.zero(),
                                note="Estimated green card approval", not_before=marker_not_before))

    slots = schedule(planned, 0.0)
    min_slots = schedule(planned, 0.0, use_min=True)
    stages = []
    for i, (stage, (start, _)) in enumerate(zip(planned, slots)):
        stages.append(ComposedStage(
            stage_id=stage.stage_id,
            label=stage.definition.label,
            track=Track.GC,
            kind=stage.definition.kind,
            duration=stage.duration,
            start_months=start,
            concurrent=stage.concurrent and i > 0,
            note=stage.note,
            priority_date=stage.priority_date,
            resolved=stage.velocity.is_current if stage.velocity else False,
            velocity=stage.velocity,
            base_duration=stage.base_duration,
        ))

    total_max = stages[-1].start_months
    total_min = min(min_slots[-1][0], total_max)
    total = Duration(total_min, total_max, f"{total_min / 12:.1f}-{total_max / 12:.1f} yr")

    # Fees already paid are not part of the remaining cost
    filed = {"pwd": case.pwd_filed_date, "perm": case.perm_filed_date, petition_id: case.i140_filed_date,
             ADJUSTMENT_STAGE: case.i485_filed_date}
    cost = estimate_filing_cost(s.stage_id for s in stages if filed.get(s.stage_id) is None)
    if case.i140_premium and case.i140_filed_date is None:
        cost += PREMIUM_PROCESSING_FEE

    logger.info(f"Tracked case {case.name!r}: {len(stages)} remaining stages, ~{total_max:.1f} months to green card")
    return ComposedPath(
        path_id=f"tracked_{case.route.value}",
        name=case.name,
        description="Your tracked case timeline. Visa bulletin wait overlaps with PERM/I-140 when applicable.",
        gc_category=case_gc_category(case),
        stages=tuple(stages),
        total=total,
        estimated_cost=cost,
        is_self_petition=not is_perm,
        bulletin_category=case_bulletin_category(case),
        country=case.country_of_birth,
        priority_date=priority_date,
    )


def apply_case_to_profile(profile: Profile, case: Optional[TrackedCase]) -> Profile:
    """
    Carry a tracked case's priority date and I-140 approval into a profile.

    Returns the profile unchanged when there is no case.
    """
    if case is None:
        return profile
    return profile.with_changes(
        existing_priority_date=case_priority_date(case),
        existing_priority_date_category=case_bulletin_category(case),
        has_approved_i140=case.i140_approved_date is not None,
    )
