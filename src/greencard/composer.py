# src/greencard/composer.py
"""
Path composer: turns eligible pathway templates into timed paths.

The status track and the green-card track are scheduled independently.
Green-card stages run sequentially unless flagged concurrent, in which case
they share their predecessor's start. Queue waits come from the velocity
model: a wait stage is inserted before I-485 when the Dates for Filing chart
blocks concurrent filing, and I-485 is extended when Final Action lags behind.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Iterable, List, Optional, Tuple

from .bulletin import BulletinData
from .dates import add_months, format_month_year
from .eligibility import filter_pathways
from .empirical_params import QUEUE_CATEGORIES
from .models import (
    BulletinChart, ComposedPath, ComposedStage, Duration, ForecastConfig, PathwayTemplate,
    Profile, StageDefinition, StageKind, StageTemplate, Track, VelocityResult
)
from .processing_times import DurationContext, StageDurationResolver
from .templates import ADJUSTMENT_STAGE, PRIORITY_WAIT_STAGE, stage_definition
from .velocity import VelocityModel

logger = logging.getLogger(__name__)

# Stages an approved I-140 makes unnecessary on the PERM route
PORTABLE_STAGES = ("pwd", "recruit", "perm", "i140")


@dataclass(frozen=True)
class PlannedStage:
    """A green-card stage before offsets are assigned."""
    definition: StageDefinition
    duration: Duration
    concurrent: bool = False
    note: str = ""
    # Earliest allowed start as (min-schedule, max-schedule) offsets
    not_before: Tuple[float, float] = (0.0, 0.0)
    velocity: Optional[VelocityResult] = None
    priority_date: Optional[date] = None
    base_duration: Optional[Duration] = None

    @property
    def stage_id(self) -> str:
        return self.definition.stage_id


def schedule(planned: List[PlannedStage], origin: float, use_min: bool = False) -> List[Tuple[float, float]]:
    """
    Assign (start, end) offsets to green-card stages.

    Sequential stages start once every earlier stage has ended; concurrent
    stages share their predecessor's start. Offsets never precede a stage's
    not_before constraint.
    """
    slots = []
    cursor = origin
    previous_start = origin
    for i, stage in enumerate(planned):
        length = stage.duration.min_months if use_min else stage.duration.max_months
        not_before = stage.not_before[0] if use_min else stage.not_before[1]
        start = previous_start if (stage.concurrent and i > 0) else cursor
        start = max(start, not_before)
        end = start + length
        cursor = max(cursor, end)
        previous_start = start
        slots.append((start, end))
    return slots


def estimate_filing_cost(stage_ids: Iterable[str]) -> int:
    """Sum of filing fees over the distinct stages of a path."""
    return sum(stage_definition(stage_id).filing_fee for stage_id in set(stage_ids))


class PathComposer:
    """
    Composes pathway templates into ComposedPath values.

    Composition is a pure function of the templates, profile, resolver,
    velocity model, bulletin and config; it never reads the clock.
    """

    def __init__(
        self,
        duration_resolver: StageDurationResolver,
        velocity_model: VelocityModel,
        bulletin: Optional[BulletinData] = None,
        config: Optional[ForecastConfig] = None
    ):
        self.duration_resolver = duration_resolver
        self.velocity_model = velocity_model
        self.bulletin = bulletin
        self.config = config or ForecastConfig()

        # Queue waits are measured from the bulletin's point in time
        self.origin_date = self.config.as_of or (bulletin.published_date if bulletin else None)
        if bulletin is None:
            logger.info("No bulletin data; queue waits will not be modeled")
        elif self.origin_date is None:
            logger.info("No as-of or bulletin publication date; projected priority dates are unavailable")

    def compose(self, templates: Iterable[PathwayTemplate], profile: Profile) -> List[ComposedPath]:
        """Compose every template; templates with no green-card stages are dropped."""
        paths = []
        for template in templates:
            path = self.compose_template(template, profile)
            if path is None:
                logger.info(f"Dropping {template.template_id}: no resolvable green-card stages")
                continue
            paths.append(path)

        paths.sort(key=lambda p: (p.total.min_months, p.path_id))
        logger.info(f"Composed {len(paths)} paths")
        return paths

    def _status_stages(self, template: PathwayTemplate, profile: Profile) -> List[ComposedStage]:
        stages = []
        offset = 0.0
        for stage in template.route.stages:
            definition = stage_definition(stage.stage_id)
            duration = self.duration_resolver.resolve_duration(
                stage.stage_id, DurationContext(is_stem=profile.is_stem, template_default=stage.duration)
            )
            note = stage.note
            if stage.stage_id == "opt":
                note = "STEM OPT (3 years)" if profile.is_stem else "Standard OPT (1 year)"
            stages.append(ComposedStage(
                stage_id=stage.stage_id,
                label=definition.label,
                track=Track.STATUS,
                kind=definition.kind,
                duration=duration,
                start_months=offset,
                note=note,
            ))
            offset += duration.max_months
        return stages

    def _plan_gc_stages(self, template: PathwayTemplate, profile: Profile) -> List[PlannedStage]:
        method_stages: List[StageTemplate] = list(template.method.stages)
        if template.method.requires_perm and not profile.needs_perm:
            method_stages = [s for s in method_stages if s.stage_id not in PORTABLE_STAGES]

        planned = []
        for stage in method_stages:
            definition = stage_definition(stage.stage_id)
            duration = self.duration_resolver.resolve_duration(
                stage.stage_id, DurationContext(is_stem=profile.is_stem, template_default=stage.duration)
            )
            planned.append(PlannedStage(definition, duration, stage.concurrent, stage.note))
        return planned

    def _priority_date(self, planned: List[PlannedStage], slots, profile: Profile) -> Tuple[Optional[date], Optional[int]]:
        """Existing priority date, else the projected filing date of the first PD-establishing stage."""
        index = next((i for i, s in enumerate(planned) if s.definition.establishes_priority_date), None)
        if profile.existing_priority_date is not None:
            return profile.existing_priority_date, index
        if index is None or self.origin_date is None:
            return None, index
        return add_months(self.origin_date, slots[index][0]), index

    def _apply_queue_waits(self, template: PathwayTemplate, profile: Profile,
                           planned: List[PlannedStage], origin: float) -> Tuple[List[PlannedStage], Optional[date]]:
        category = template.bulletin_category
        slots = schedule(planned, origin)
        priority_date, pd_index = self._priority_date(planned, slots, profile)

        if pd_index is not None and priority_date is not None:
            planned[pd_index] = replace(planned[pd_index], priority_date=priority_date)

        if category not in QUEUE_CATEGORIES or self.bulletin is None or priority_date is None:
            return planned, priority_date

        i485_index = next((i for i, s in enumerate(planned) if s.stage_id == ADJUSTMENT_STAGE), None)
        if i485_index is None:
            return planned, priority_date

        country = profile.country_of_birth
        final_cell = self.bulletin.cell(category, country, BulletinChart.FINAL_ACTION)
        if final_cell is None:
            logger.warning(f"No final action cutoff for {category.value}/{country.value}; skipping queue wait")
            return planned, priority_date
        filing_cell = self.bulletin.cell(category, country, BulletinChart.DATES_FOR_FILING)

        filing = self.velocity_model.estimate_wait(priority_date, filing_cell, country, category)
        final = self.velocity_model.estimate_wait(priority_date, final_cell, country, category)
        pd_label = format_month_year(priority_date)

        # Dates for Filing blocks concurrent I-485 filing
        i485_start = slots[i485_index][0]
        if filing.estimated_months > i485_start:
            blocked_until = max(end for _, end in slots[:i485_index]) if i485_index > 0 else origin
            if filing.estimated_months > blocked_until:
                wait = PlannedStage(
                    definition=stage_definition(PRIORITY_WAIT_STAGE),
                    duration=Duration(0.0, round(filing.estimated_months - blocked_until, 2)),
                    note=f"Wait until {pd_label} is current for filing",
                    velocity=filing,
                    priority_date=priority_date,
                )
                planned.insert(i485_index, wait)
                i485_index += 1
            planned[i485_index] = replace(
                planned[i485_index],
                concurrent=False,
                note="After priority date is current for filing",
                not_before=(filing.range_min, filing.estimated_months),
            )
        elif final.estimated_months > 0:
            planned[i485_index] = replace(
                planned[i485_index],
                note=f"Concurrent filing OK. ~{final.estimated_months:.0f} mo wait for approval",
            )

        # Final Action lags: I-485 stays pending until the date is current
        slots = schedule(planned, origin)
        i485_start, i485_end = slots[i485_index]
        if final.estimated_months > i485_end:
            current = planned[i485_index]
            planned[i485_index] = replace(
                current,
                duration=Duration(current.duration.min_months,
                                  max(final.estimated_months - i485_start, current.duration.max_months)),
                note=f"{current.note}; pending until final action date is current".lstrip("; "),
                velocity=final,
                base_duration=current.duration,
            )
        if final.estimated_months > 0:
            marker_index = next((i for i, s in enumerate(planned) if s.definition.kind == StageKind.MARKER), None)
            if marker_index is not None:
                planned[marker_index] = replace(planned[marker_index],
                                                not_before=(final.range_min, final.estimated_months))
        return planned, priority_date

    def compose_template(self, template: PathwayTemplate, profile: Profile) -> Optional[ComposedPath]:
        """Compose one template, or None when it has no green-card stages to schedule."""
        status_stages = self._status_stages(template, profile)
        planned = self._plan_gc_stages(template, profile)
        if not any(s.definition.kind != StageKind.MARKER for s in planned):
            return None

        origin = template.route.gc_start_offset_months or 0.0
        planned, priority_date = self._apply_queue_waits(template, profile, planned, origin)

        slots = schedule(planned, origin)
        min_slots = schedule(planned, origin, use_min=True)

        gc_stages = []
        for i, (stage, (start, _)) in enumerate(zip(planned, slots)):
            gc_stages.append(ComposedStage(
                stage_id=stage.stage_id,
                label=stage.definition.label,
                track=Track.GC,
                kind=stage.definition.kind,
                duration=stage.duration,
                start_months=start,
                concurrent=stage.concurrent and i > 0,
                note=stage.note,
                priority_date=stage.priority_date,
                velocity=stage.velocity,
                base_duration=stage.base_duration,
            ))

        gc_end = max(end for _, end in slots)
        gc_end_min = max(end for _, end in min_slots)
        if gc_stages[-1].is_marker:
            total_max = gc_stages[-1].start_months
        else:
            total_max = gc_end
        total = Duration(min(gc_end_min, total_max), total_max)
        total = replace(total, display=f"{total.min_months / 12:.1f}-{total.max_months / 12:.1f} yr")

        stages = tuple(status_stages + gc_stages)
        return ComposedPath(
            path_id=template.template_id,
            name=template.name,
            description=template.description,
            gc_category=template.gc_category,
            stages=stages,
            total=total,
            estimated_cost=estimate_filing_cost(s.stage_id for s in stages),
            has_lottery=template.has_lottery,
            is_self_petition=template.is_self_petition,
            bulletin_category=template.bulletin_category,
            country=profile.country_of_birth,
            priority_date=priority_date,
        )


def compose(
    templates: Iterable[PathwayTemplate],
    profile: Profile,
    duration_resolver: StageDurationResolver,
    velocity_model: VelocityModel,
    bulletin: Optional[BulletinData] = None,
    config: Optional[ForecastConfig] = None
) -> List[ComposedPath]:
    """Compose templates into timed paths, sorted fastest first."""
    return PathComposer(duration_resolver, velocity_model, bulletin, config).compose(templates, profile)


def generate_paths(
    profile: Profile,
    duration_resolver: Optional[StageDurationResolver] = None,
    velocity_model: Optional[VelocityModel] = None,
    bulletin: Optional[BulletinData] = None,
    config: Optional[ForecastConfig] = None
) -> List[ComposedPath]:
    """Filter the catalog for a profile and compose every eligible pathway."""
    config = config or ForecastConfig()
    duration_resolver = duration_resolver or StageDurationResolver(as_of=config.as_of,
                                                                   max_data_age_days=config.max_data_age_days)
    velocity_model = velocity_model or VelocityModel()
    return compose(filter_pathways(profile), profile, duration_resolver, velocity_model, bulletin, config)
