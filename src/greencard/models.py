# src/greencard/models.py
"""
Core data models for green-card path forecasting.
All durations and offsets are expressed in months.
Composed paths, velocity results and progress records are immutable values;
updates always return a new instance.
"""
from dataclasses import dataclass, field, replace, asdict
from datetime import date
from typing import Dict, List, Optional, Tuple, Any
from enum import Enum
import math
import logging

import pandas as pd

from .dates import parse_iso_date

logger = logging.getLogger(__name__)


class DataIntegrityError(ValueError):
    """Raised for programmer errors: inverted ranges, unknown categories, undefined stages."""


class CurrentStatus(Enum):
    CANADA = "canada"
    F1 = "f1"
    OPT = "opt"
    TN = "tn"
    H1B = "h1b"
    OTHER = "other"


class Education(Enum):
    HIGHSCHOOL = "highschool"
    BACHELORS = "bachelors"
    MASTERS = "masters"
    PHD = "phd"

    @property
    def rank(self) -> int:
        return _EDUCATION_RANK[self]


_EDUCATION_RANK = {
    Education.HIGHSCHOOL: 0,
    Education.BACHELORS: 1,
    Education.MASTERS: 2,
    Education.PHD: 3,
}


class Experience(Enum):
    LT2 = "lt2"
    TWO_TO_FIVE = "2to5"
    GT5 = "gt5"

    @property
    def rank(self) -> int:
        return _EXPERIENCE_RANK[self]


_EXPERIENCE_RANK = {
    Experience.LT2: 0,
    Experience.TWO_TO_FIVE: 1,
    Experience.GT5: 2,
}


class Country(Enum):
    CANADA = "canada"
    MEXICO = "mexico"
    INDIA = "india"
    CHINA = "china"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> 'Country':
        """Unknown country names fall back to OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.debug(f"Unknown country {value!r}, using residual 'other' share")
            return cls.OTHER


class EBCategory(Enum):
    EB1 = "EB-1"
    EB2 = "EB-2"
    EB3 = "EB-3"
    EB4 = "EB-4"
    EB5 = "EB-5"

    @classmethod
    def parse(cls, value: Any) -> 'EBCategory':
        """Accepts "EB-2", "eb2", "EB2" and enum members."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace("-", "").replace(" ", "")
        for category in cls:
            if category.value.replace("-", "") == normalized:
                return category
        raise DataIntegrityError(f"Unknown EB category: {value!r}")


class Track(Enum):
    STATUS = "status"
    GC = "gc"


class StageKind(Enum):
    STATUS_VISA = "status_visa"
    PROCESSING = "processing"
    QUEUE_WAIT = "queue_wait"
    MARKER = "marker"


class StageStatus(Enum):
    NOT_STARTED = "not_started"
    FILED = "filed"
    APPROVED = "approved"

    @classmethod
    def parse(cls, value: Any) -> 'StageStatus':
        """Legacy "pending"/"in_progress" values map to FILED; anything unknown is NOT_STARTED."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        if text in ("filed", "pending", "in_progress"):
            return cls.FILED
        if text == "approved":
            return cls.APPROVED
        return cls.NOT_STARTED


class BulletinChart(Enum):
    FINAL_ACTION = "final_action"
    DATES_FOR_FILING = "dates_for_filing"


class CaseRoute(Enum):
    PERM = "perm"
    NIW = "niw"
    EB1 = "eb1"


def _format_part(months: float) -> str:
    if months < 1:
        return f"{round(months * 30.4375)}d"
    return f"{months:.1f}".rstrip("0").rstrip(".")


def format_duration(min_months: float, max_months: float) -> str:
    """Human-readable range, e.g. "5-7 mo", "15d-9 mo", "2.5-4.0 yr"."""
    if max_months <= 0:
        return "0 mo"
    if min_months >= 24:
        return f"{min_months / 12:.1f}-{max_months / 12:.1f} yr"
    low, high = _format_part(min_months), _format_part(max_months)
    suffix = "" if high.endswith("d") else " mo"
    if low == high:
        return f"{high}{suffix}"
    return f"{low}-{high}{suffix}"


@dataclass(frozen=True)
class Duration:
    """Min/max duration in months. Construction rejects negative, NaN or inverted ranges."""
    min_months: float
    max_months: float
    display: str = ""

    def __post_init__(self):
        for value in (self.min_months, self.max_months):
            if value is None or isinstance(value, bool) or math.isnan(value) or math.isinf(value):
                raise DataIntegrityError(f"Duration bound must be a finite number, got {value!r}")
            if value < 0:
                raise DataIntegrityError(f"Negative duration: {self.min_months}-{self.max_months}")
        if self.min_months > self.max_months:
            raise DataIntegrityError(f"Inverted duration range: min={self.min_months} > max={self.max_months}")
        if not self.display:
            object.__setattr__(self, 'display', format_duration(self.min_months, self.max_months))

    @classmethod
    def zero(cls) -> 'Duration':
        return cls(0.0, 0.0)

    @classmethod
    def fixed(cls, months: float, display: str = "") -> 'Duration':
        return cls(months, months, display)

    @classmethod
    def from_years(cls, min_years: float, max_years: float, display: str = "") -> 'Duration':
        return cls(min_years * 12, max_years * 12, display)


@dataclass(frozen=True)
class Requirements:
    """Eligibility requirements for a status route or green-card method."""
    min_education: Optional[Education] = None
    max_education: Optional[Education] = None
    min_experience: Optional[Experience] = None
    extraordinary_ability: bool = False
    outstanding_researcher: bool = False
    executive: bool = False
    married_to_us_citizen: bool = False
    investment_capital: bool = False


@dataclass(frozen=True)
class StageDefinition:
    """Catalog entry for a stage id; resolved once when the catalog is loaded."""
    stage_id: str
    label: str
    kind: StageKind
    track: Track
    establishes_priority_date: bool = False
    filing_fee: int = 0


@dataclass(frozen=True)
class StageTemplate:
    """A stage as it appears inside a route or method template."""
    stage_id: str
    duration: Duration
    concurrent: bool = False
    note: str = ""


@dataclass(frozen=True)
class StatusRoute:
    """Work-authorization track (e.g. OPT then H-1B) plus when the green-card process may begin."""
    route_id: str
    name: str
    description: str
    valid_from: Tuple[CurrentStatus, ...]
    stages: Tuple[StageTemplate, ...]
    requirements: Requirements = Requirements()
    gc_start_offset_months: Optional[float] = None
    grants_education: Optional[Education] = None
    requires_tn_eligibility: bool = False

    @property
    def is_direct(self) -> bool:
        return self.route_id == "none"


@dataclass(frozen=True)
class GreenCardMethod:
    """Green-card track (e.g. PERM, NIW, EB-1A) with its ordered stages."""
    method_id: str
    name: str
    description: str
    stages: Tuple[StageTemplate, ...]
    requirements: Requirements = Requirements()
    requires_perm: bool = False
    fixed_category: Optional[str] = None
    bulletin_category: Optional[EBCategory] = None
    self_petition: bool = False
    only_with_routes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PathwayTemplate:
    """One legally distinct route: a status route combined with a green-card method."""
    route: StatusRoute
    method: GreenCardMethod
    gc_category: str
    bulletin_category: Optional[EBCategory]

    @property
    def template_id(self) -> str:
        return f"{self.route.route_id}_{self.method.method_id}"

    @property
    def name(self) -> str:
        if self.route.is_direct:
            return f"{self.method.name} (Direct)"
        return f"{self.route.name} → {self.gc_category}"

    @property
    def description(self) -> str:
        description = self.route.description
        if self.method.requires_perm:
            offset = self.route.gc_start_offset_months or 0
            if offset == 0:
                timing = "immediately"
            elif offset < 12:
                timing = f"after {offset:g} months"
            else:
                timing = f"at year {offset / 12:g}"
            description += f". Start PERM {timing}."
        return description

    @property
    def is_self_petition(self) -> bool:
        return self.method.self_petition

    @property
    def has_lottery(self) -> bool:
        return any(stage.stage_id == "h1b" for stage in self.route.stages)


_PROFILE_KEY_ALIASES = {
    'currentStatus': 'current_status',
    'isStem': 'is_stem',
    'countryOfBirth': 'country_of_birth',
    'isCanadianOrMexicanCitizen': 'treaty_citizen',
    'hasExtraordinaryAbility': 'extraordinary_ability',
    'isOutstandingResearcher': 'outstanding_researcher',
    'isExecutive': 'executive',
    'isMarriedToUSCitizen': 'married_to_us_citizen',
    'hasInvestmentCapital': 'investment_capital',
    'hasApprovedI140': 'has_approved_i140',
    'needsNewPerm': 'needs_new_perm',
    'existingPriorityDate': 'existing_priority_date',
    'existingPriorityDateCategory': 'existing_priority_date_category',
}


@dataclass(frozen=True)
class Profile:
    """Immigration-relevant attributes of one person. Owned by the caller."""
    current_status: CurrentStatus = CurrentStatus.CANADA
    education: Education = Education.BACHELORS
    experience: Experience = Experience.LT2
    is_stem: bool = False
    country_of_birth: Country = Country.CANADA
    treaty_citizen: bool = False
    extraordinary_ability: bool = False
    outstanding_researcher: bool = False
    executive: bool = False
    married_to_us_citizen: bool = False
    investment_capital: bool = False
    has_approved_i140: bool = False
    needs_new_perm: Optional[bool] = None
    existing_priority_date: Optional[date] = None
    existing_priority_date_category: Optional[EBCategory] = None

    @property
    def needs_perm(self) -> bool:
        """An approved I-140 can be reused unless the person must start a new PERM."""
        if self.needs_new_perm:
            return True
        return not self.has_approved_i140

    def with_changes(self, **changes) -> 'Profile':
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Profile':
        """Build a profile from JSON-style data (camelCase or snake_case keys)."""
        values = {}
        for key, value in data.items():
            name = _PROFILE_KEY_ALIASES.get(key, key)
            if name in cls.__dataclass_fields__:
                values[name] = value

        if 'current_status' in values:
            values['current_status'] = CurrentStatus(values['current_status'])
        if 'education' in values:
            values['education'] = Education(values['education'])
        if 'experience' in values:
            values['experience'] = Experience(values['experience'])
        if 'country_of_birth' in values:
            values['country_of_birth'] = Country.parse(values['country_of_birth'])
        if 'existing_priority_date' in values:
            values['existing_priority_date'] = parse_iso_date(values['existing_priority_date'])
        if values.get('existing_priority_date_category'):
            values['existing_priority_date_category'] = EBCategory.parse(values['existing_priority_date_category'])
        else:
            values.pop('existing_priority_date_category', None)

        return cls(**values)


@dataclass(frozen=True)
class VelocityResult:
    """Projected queue wait for one priority date. Derived per request, never stored."""
    estimated_months: float
    range_min: float
    range_max: float
    confidence: float
    explanation: str
    advancement_months_per_year: float = 12.0
    velocity_ratio: float = 0.0
    demand_ratio: Optional[float] = None
    months_behind: float = 0.0

    @property
    def is_current(self) -> bool:
        return self.estimated_months == 0

    @classmethod
    def current(cls, explanation: str) -> 'VelocityResult':
        return cls(0.0, 0.0, 0.0, 1.0, explanation)


@dataclass(frozen=True)
class ComposedStage:
    """A timed stage in a composed path."""
    stage_id: str
    label: str
    track: Track
    kind: StageKind
    duration: Duration
    start_months: float
    concurrent: bool = False
    note: str = ""
    priority_date: Optional[date] = None
    resolved: bool = False
    velocity: Optional[VelocityResult] = None
    # Agency processing range before any queue-wait extension
    base_duration: Optional[Duration] = None

    @property
    def end_months(self) -> float:
        return self.start_months + self.duration.max_months

    @property
    def is_queue_wait(self) -> bool:
        return self.kind == StageKind.QUEUE_WAIT

    @property
    def is_marker(self) -> bool:
        return self.kind == StageKind.MARKER


@dataclass(frozen=True)
class ComposedPath:
    """The output unit of composition: one path with its timed stages."""
    path_id: str
    name: str
    description: str
    gc_category: str
    stages: Tuple[ComposedStage, ...]
    total: Duration
    estimated_cost: int = 0
    has_lottery: bool = False
    is_self_petition: bool = False
    bulletin_category: Optional[EBCategory] = None
    country: Optional[Country] = None
    priority_date: Optional[date] = None

    @property
    def gc_stages(self) -> List[ComposedStage]:
        return [s for s in self.stages if s.track == Track.GC]

    @property
    def status_stages(self) -> List[ComposedStage]:
        return [s for s in self.stages if s.track == Track.STATUS]

    @property
    def marker(self) -> Optional[ComposedStage]:
        for stage in self.stages:
            if stage.is_marker:
                return stage
        return None

    def stage(self, stage_id: str) -> Optional[ComposedStage]:
        for s in self.stages:
            if s.stage_id == stage_id:
                return s
        return None

    def to_rows(self) -> List[Dict[str, Any]]:
        """Flatten into one row per stage."""
        rows = []
        for order, s in enumerate(self.stages):
            rows.append({
                'path_id': self.path_id,
                'path_name': self.name,
                'gc_category': self.gc_category,
                'order': order,
                'stage_id': s.stage_id,
                'label': s.label,
                'track': s.track.value,
                'kind': s.kind.value,
                'start_months': round(s.start_months, 2),
                'min_months': round(s.duration.min_months, 2),
                'max_months': round(s.duration.max_months, 2),
                'display': s.duration.display,
                'concurrent': s.concurrent,
                'resolved': s.resolved,
                'note': s.note,
            })
        return rows

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(self.to_rows())


@dataclass(frozen=True)
class StageProgress:
    """User-entered state of one stage."""
    status: StageStatus = StageStatus.NOT_STARTED
    filed_date: Optional[date] = None
    approved_date: Optional[date] = None
    receipt_number: Optional[str] = None
    priority_date: Optional[date] = None
    notes: str = ""

    @property
    def has_progress(self) -> bool:
        return self.status != StageStatus.NOT_STARTED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StageProgress':
        """Malformed dates are kept as absent."""
        return cls(
            status=StageStatus.parse(data.get('status')),
            filed_date=parse_iso_date(data.get('filedDate', data.get('filed_date'))),
            approved_date=parse_iso_date(data.get('approvedDate', data.get('approved_date'))),
            receipt_number=data.get('receiptNumber', data.get('receipt_number')) or None,
            priority_date=parse_iso_date(data.get('priorityDate', data.get('priority_date'))),
            notes=data.get('notes') or "",
        )


@dataclass(frozen=True)
class ProgressRecord:
    """Per-stage progress plus a process-wide ported priority date."""
    stages: Dict[str, StageProgress] = field(default_factory=dict)
    ported_priority_date: Optional[date] = None
    ported_category: Optional[EBCategory] = None

    def get(self, stage_id: str) -> StageProgress:
        return self.stages.get(stage_id, StageProgress())

    def with_stage(self, stage_id: str, progress: StageProgress) -> 'ProgressRecord':
        stages = dict(self.stages)
        stages[stage_id] = progress
        return replace(self, stages=stages)

    def with_ported_priority_date(self, priority_date: Optional[date],
                                  category: Optional[EBCategory] = None) -> 'ProgressRecord':
        return replace(self, ported_priority_date=priority_date, ported_category=category)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProgressRecord':
        raw_stages = data.get('stages', data.get('stageProgress', {})) or {}
        stages = {stage_id: StageProgress.from_dict(entry or {}) for stage_id, entry in raw_stages.items()}
        ported = data.get('portedPriorityDate', data.get('ported_priority_date'))
        category = data.get('portedPriorityDateCategory', data.get('ported_category'))
        return cls(
            stages=stages,
            ported_priority_date=parse_iso_date(ported),
            ported_category=EBCategory.parse(category) if category else None,
        )


_CASE_DATE_FIELDS = {
    'pwdFiledDate': 'pwd_filed_date',
    'pwdIssuedDate': 'pwd_issued_date',
    'recruitmentStartDate': 'recruitment_start_date',
    'permFiledDate': 'perm_filed_date',
    'permApprovedDate': 'perm_approved_date',
    'i140FiledDate': 'i140_filed_date',
    'i140ApprovedDate': 'i140_approved_date',
    'i485FiledDate': 'i485_filed_date',
    'i485ApprovedDate': 'i485_approved_date',
}


@dataclass(frozen=True)
class TrackedCase:
    """A single real in-progress case with explicit milestone dates."""
    route: CaseRoute = CaseRoute.PERM
    country_of_birth: Country = Country.OTHER
    category: EBCategory = EBCategory.EB2
    name: str = "My case"
    pwd_filed_date: Optional[date] = None
    pwd_issued_date: Optional[date] = None
    recruitment_start_date: Optional[date] = None
    perm_filed_date: Optional[date] = None
    perm_approved_date: Optional[date] = None
    i140_filed_date: Optional[date] = None
    i140_approved_date: Optional[date] = None
    i485_filed_date: Optional[date] = None
    i485_approved_date: Optional[date] = None
    i140_premium: bool = True
    perm_likely_audited: bool = False
    receipts: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackedCase':
        values: Dict[str, Any] = {
            'route': CaseRoute(data.get('route', 'perm')),
            'country_of_birth': Country.parse(data.get('countryOfBirth', data.get('country_of_birth', 'other'))),
            'category': EBCategory.parse(data.get('ebCategory', data.get('category', 'EB-2'))),
            'name': data.get('name', "My case"),
            'i140_premium': bool(data.get('i140Premium', data.get('i140_premium', True))),
            'perm_likely_audited': bool(data.get('permLikelyAudited', data.get('perm_likely_audited', False))),
        }
        for camel, snake in _CASE_DATE_FIELDS.items():
            values[snake] = parse_iso_date(data.get(camel, data.get(snake)))

        receipts = data.get('receipts') or {}
        if isinstance(receipts, list):
            receipts = {r.get('form'): r.get('receiptNumber') for r in receipts if r.get('form')}
        values['receipts'] = dict(receipts)
        return cls(**values)


@dataclass
class ForecastConfig:
    """Run configuration for the forecasting CLI."""
    as_of: Optional[date] = None
    max_data_age_days: int = 90
    output_path: str = "data/paths.csv"
    debug: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['as_of'] = self.as_of.isoformat() if self.as_of else None
        return data
