# src/greencard/processing_times.py
"""
Live agency processing-time data and the stage duration resolver.
Live data is consumed as already-fetched plain dicts; when it is missing,
incomplete or stale the resolver falls back to template and static ranges.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .dates import parse_iso_date
from .empirical_params import (
    PERM_MIN_MONTHS, PERM_RANGE_SPREAD_MONTHS, PWD_MIN_FACTOR, STANDARD_OPT_MONTHS,
    STATIC_STAGE_DURATIONS, STATUS_VISA_PROCESSING_MONTHS, STATUS_VISA_VALIDITY_MONTHS,
    STEM_OPT_MONTHS
)
from .models import DataIntegrityError, Duration, StageKind
from .templates import PETITION_STAGES, stage_definition

logger = logging.getLogger(__name__)

PREMIUM_TIER = "Premium"
DEFAULT_PREMIUM_MIN_MONTHS = 0.5
DEFAULT_REGULAR_MAX_MONTHS = 9


@dataclass(frozen=True)
class ServiceCenterTime:
    """Processing range reported by one USCIS office or service tier."""
    service_center: str
    min_months: float
    max_months: float
    as_of: Optional[date] = None

    @property
    def is_premium(self) -> bool:
        return self.service_center == PREMIUM_TIER


@dataclass(frozen=True)
class DolEstimate:
    """DOL estimate with the "currently processing" month label."""
    estimated_months: float
    currently_processing: str = ""


@dataclass(frozen=True)
class ProcessingTimes:
    """Normalized processing-time snapshot."""
    last_updated: Optional[date] = None
    uscis: Dict[str, Tuple[ServiceCenterTime, ...]] = field(default_factory=dict)
    pwd: Optional[DolEstimate] = None
    perm_analyst: Optional[DolEstimate] = None
    perm_audit: Optional[DolEstimate] = None

    def form_times(self, form: str) -> Tuple[ServiceCenterTime, ...]:
        return self.uscis.get(form, ())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessingTimes':
        """
        Build from the collaborator's JSON shape.

        Entries with missing or inverted ranges are dropped with a warning so a
        single bad row never poisons the whole snapshot.
        """
        uscis = {}
        for form, entries in (data.get('uscis') or {}).items():
            parsed = []
            for entry in entries or []:
                times = entry.get('processingTime') or {}
                low, high = times.get('min'), times.get('max')
                if not isinstance(low, (int, float)) or not isinstance(high, (int, float)) or low > high or low < 0:
                    logger.warning(f"Dropping malformed {form} processing time: {entry}")
                    continue
                parsed.append(ServiceCenterTime(
                    service_center=entry.get('serviceCenter', 'National'),
                    min_months=float(low),
                    max_months=float(high),
                    as_of=parse_iso_date(entry.get('asOf')),
                ))
            uscis[form] = tuple(parsed)

        dol = data.get('dol') or {}
        perm = dol.get('perm') or {}
        return cls(
            last_updated=parse_iso_date(data.get('lastUpdated')),
            uscis=uscis,
            pwd=_parse_dol_estimate(dol.get('pwd')),
            perm_analyst=_parse_dol_estimate(perm.get('analystReview')),
            perm_audit=_parse_dol_estimate(perm.get('auditReview')),
        )

    def to_dataframe(self) -> pd.DataFrame:
        """One row per USCIS office plus the DOL estimates."""
        rows: List[Dict[str, Any]] = []
        for form, entries in self.uscis.items():
            for entry in entries:
                rows.append({'agency': 'USCIS', 'form': form, 'office': entry.service_center,
                             'min_months': entry.min_months, 'max_months': entry.max_months})
        for form, estimate in (('PWD', self.pwd), ('PERM analyst', self.perm_analyst), ('PERM audit', self.perm_audit)):
            if estimate is not None:
                rows.append({'agency': 'DOL', 'form': form, 'office': estimate.currently_processing,
                             'min_months': estimate.estimated_months, 'max_months': estimate.estimated_months})
        return pd.DataFrame(rows, columns=['agency', 'form', 'office', 'min_months', 'max_months'])


def _parse_dol_estimate(data: Optional[Dict[str, Any]]) -> Optional[DolEstimate]:
    if not data:
        return None
    months = data.get('estimatedMonths')
    if not isinstance(months, (int, float)) or months < 0:
        logger.warning(f"Dropping malformed DOL estimate: {data}")
        return None
    return DolEstimate(float(months), data.get('currentlyProcessing', ""))


DEFAULT_PROCESSING_TIMES = ProcessingTimes.from_dict({
    "lastUpdated": "2025-12-01",
    "uscis": {
        "I-140": [
            {"serviceCenter": "Texas", "processingTime": {"min": 6, "max": 9}, "asOf": "2025-12-01"},
            {"serviceCenter": "Nebraska", "processingTime": {"min": 5, "max": 8}, "asOf": "2025-12-01"},
        ],
        "I-485": [{"serviceCenter": "National", "processingTime": {"min": 10, "max": 18}, "asOf": "2025-12-01"}],
        "I-765": [{"serviceCenter": "National", "processingTime": {"min": 3, "max": 5}, "asOf": "2025-12-01"}],
        "I-130": [{"serviceCenter": "National", "processingTime": {"min": 12, "max": 24}, "asOf": "2025-12-01"}],
        "I-129": [{"serviceCenter": "National", "processingTime": {"min": 1, "max": 3}, "asOf": "2025-12-01"}],
    },
    "dol": {
        "pwd": {"currentlyProcessing": "July 2025", "estimatedMonths": 6},
        "perm": {
            "analystReview": {"currentlyProcessing": "August 2024", "estimatedMonths": 17},
            "auditReview": {"currentlyProcessing": "March 2024", "estimatedMonths": 22},
        },
    },
})


@dataclass(frozen=True)
class DurationContext:
    """Per-request inputs that change how a stage is timed."""
    is_stem: bool = False
    premium: bool = False
    perm_audited: bool = False
    template_default: Optional[Duration] = None


class StageDurationResolver:
    """
    Maps stage ids to min/max duration ranges.

    Live processing data wins when present and fresh; otherwise the template's
    own range is used, then the static typical range.
    """

    def __init__(
        self,
        processing_times: Optional[ProcessingTimes] = None,
        as_of: Optional[date] = None,
        max_data_age_days: int = 90
    ):
        """
        Initialize resolver.

        Args:
            processing_times: Live snapshot, or None when unavailable
            as_of: Reference date for the staleness check (no check when None)
            max_data_age_days: Snapshots older than this are ignored
        """
        self.as_of = as_of
        self.max_data_age_days = max_data_age_days
        self.live: Optional[ProcessingTimes] = None

        if processing_times is None:
            logger.info("No live processing times; using static durations")
        elif self._is_stale(processing_times):
            logger.warning(f"Processing times from {processing_times.last_updated} are older than "
                           f"{max_data_age_days} days as of {as_of}; using static durations")
        else:
            self.live = processing_times

    def _is_stale(self, processing_times: ProcessingTimes) -> bool:
        if self.as_of is None or processing_times.last_updated is None:
            return False
        return (self.as_of - processing_times.last_updated).days > self.max_data_age_days

    @property
    def has_live_data(self) -> bool:
        return self.live is not None

    def resolve_duration(self, stage_id: str, context: Optional[DurationContext] = None) -> Duration:
        """
        Resolve the duration range for one stage.

        Raises:
            DataIntegrityError: for queue waits, which are timed by the velocity model
        """
        context = context or DurationContext()
        definition = stage_definition(stage_id)

        if definition.kind == StageKind.QUEUE_WAIT:
            raise DataIntegrityError(f"Queue wait {stage_id!r} is timed by the velocity model, not the resolver")
        if definition.kind == StageKind.MARKER:
            return context.template_default or Duration.zero()
        if definition.kind == StageKind.STATUS_VISA:
            return self._status_visa_duration(stage_id, context)

        live = self._live_duration(stage_id, context)
        if live is not None:
            return live
        if context.template_default is not None:
            return context.template_default

        static = STATIC_STAGE_DURATIONS.get(stage_id)
        if static is None:
            raise DataIntegrityError(f"No duration data for stage {stage_id!r}")
        logger.debug(f"Using static duration for {stage_id}: {static}")
        return Duration(*static)

    def _status_visa_duration(self, stage_id: str, context: DurationContext) -> Duration:
        if stage_id == "opt":
            if context.is_stem:
                return Duration(*STEM_OPT_MONTHS, display="1-3 yr")
            return Duration(*STANDARD_OPT_MONTHS, display="1 yr")
        if context.template_default is not None:
            return context.template_default
        return Duration(STATUS_VISA_PROCESSING_MONTHS[stage_id], STATUS_VISA_VALIDITY_MONTHS[stage_id])

    def _live_duration(self, stage_id: str, context: DurationContext) -> Optional[Duration]:
        if self.live is None:
            return None

        if stage_id == "pwd" and self.live.pwd is not None:
            months = self.live.pwd.estimated_months
            return Duration(months * PWD_MIN_FACTOR, months + 1, f"{months:g}-{months + 1:g} mo")

        if stage_id == "perm":
            estimate = self.live.perm_audit if context.perm_audited and self.live.perm_audit else self.live.perm_analyst
            if estimate is None:
                return None
            months = estimate.estimated_months
            high = months + PERM_RANGE_SPREAD_MONTHS
            low = min(max(months - PERM_RANGE_SPREAD_MONTHS, PERM_MIN_MONTHS), high)
            return Duration(low, high)

        if stage_id in PETITION_STAGES:
            entries = self.live.form_times("I-140")
            if not entries:
                return None
            premium = next((e for e in entries if e.is_premium), None)
            regular = next((e for e in entries if not e.is_premium), None)
            low = premium.min_months if premium else DEFAULT_PREMIUM_MIN_MONTHS
            high = regular.max_months if regular else DEFAULT_REGULAR_MAX_MONTHS
            if context.premium:
                return Duration.fixed(low)
            return Duration(min(low, high), high)

        if stage_id == "i485":
            entries = self.live.form_times("I-485")
            if not entries:
                return None
            low = float(np.mean([e.min_months for e in entries]))
            high = float(np.mean([e.max_months for e in entries]))
            return Duration(low, high)

        return None

    def currently_processing(self, stage_id: str, audited: bool = False) -> Optional[str]:
        """DOL "currently processing" month label for PWD/PERM, if known."""
        if self.live is None:
            return None
        if stage_id == "pwd" and self.live.pwd:
            return self.live.pwd.currently_processing or None
        if stage_id == "perm":
            estimate = self.live.perm_audit if audited and self.live.perm_audit else self.live.perm_analyst
            return estimate.currently_processing if estimate and estimate.currently_processing else None
        return None
