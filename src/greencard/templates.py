# src/greencard/templates.py
"""
Static pathway reference data: the stage catalog, status routes and green-card methods.
Template durations are the fallback when neither live nor static processing data applies.
"""
import logging
from typing import Dict, Iterable, Tuple

from .models import (
    CurrentStatus, DataIntegrityError, Duration, EBCategory, Education, GreenCardMethod,
    Requirements, StageDefinition, StageKind, StageTemplate, StatusRoute, Track
)
from .empirical_params import STAGE_FILING_FEES

logger = logging.getLogger(__name__)

PRIORITY_WAIT_STAGE = "priority_wait"
GREEN_CARD_STAGE = "gc"
ADJUSTMENT_STAGE = "i485"
PETITION_STAGES = ("i140", "eb1", "eb2niw")


def _stage(stage_id: str, label: str, kind: StageKind, track: Track, establishes_pd: bool = False) -> StageDefinition:
    return StageDefinition(
        stage_id=stage_id,
        label=label,
        kind=kind,
        track=track,
        establishes_priority_date=establishes_pd,
        filing_fee=STAGE_FILING_FEES.get(stage_id, 0),
    )


STAGE_CATALOG: Dict[str, StageDefinition] = {s.stage_id: s for s in (
    # Status visas
    _stage("f1", "F-1 Student", StageKind.STATUS_VISA, Track.STATUS),
    _stage("opt", "OPT", StageKind.STATUS_VISA, Track.STATUS),
    _stage("tn", "TN Visa", StageKind.STATUS_VISA, Track.STATUS),
    _stage("h1b", "H-1B", StageKind.STATUS_VISA, Track.STATUS),
    _stage("l1a", "L-1A", StageKind.STATUS_VISA, Track.STATUS),
    _stage("l1b", "L-1B", StageKind.STATUS_VISA, Track.STATUS),
    _stage("o1", "O-1", StageKind.STATUS_VISA, Track.STATUS),
    # Green-card processing
    _stage("pwd", "Prevailing Wage (PWD)", StageKind.PROCESSING, Track.GC),
    _stage("recruit", "Recruitment", StageKind.PROCESSING, Track.GC),
    _stage("perm", "PERM Labor Certification", StageKind.PROCESSING, Track.GC, establishes_pd=True),
    _stage("i140", "I-140 Petition", StageKind.PROCESSING, Track.GC, establishes_pd=True),
    _stage("eb2niw", "EB-2 NIW Petition", StageKind.PROCESSING, Track.GC, establishes_pd=True),
    _stage("eb1", "EB-1 Petition", StageKind.PROCESSING, Track.GC, establishes_pd=True),
    _stage("marriage", "I-130 + I-485 (Marriage)", StageKind.PROCESSING, Track.GC),
    _stage("eb5", "I-526E Investor Petition", StageKind.PROCESSING, Track.GC),
    _stage("i485", "I-485 Adjustment of Status", StageKind.PROCESSING, Track.GC),
    _stage(PRIORITY_WAIT_STAGE, "Priority Date Wait", StageKind.QUEUE_WAIT, Track.GC),
    _stage(GREEN_CARD_STAGE, "Green Card", StageKind.MARKER, Track.GC),
)}


def _years(stage_id: str, min_years: float, max_years: float, display: str = "",
           note: str = "", concurrent: bool = False) -> StageTemplate:
    return StageTemplate(stage_id, Duration.from_years(min_years, max_years, display), concurrent, note)


_ALL_STATUSES = tuple(CurrentStatus)
_STUDENT_FROM = (CurrentStatus.CANADA, CurrentStatus.TN, CurrentStatus.H1B,
                 CurrentStatus.F1, CurrentStatus.OPT, CurrentStatus.OTHER)
_STUDENT_OPT = _years("opt", 1, 3, "1-3 yr", "STEM: up to 3 years")

STATUS_ROUTES: Tuple[StatusRoute, ...] = (
    StatusRoute(
        route_id="student_masters",
        name="Student → Master's",
        description="Get a US Master's degree to qualify for EB-2. Work on OPT while pursuing green card",
        valid_from=_STUDENT_FROM,
        requirements=Requirements(min_education=Education.BACHELORS, max_education=Education.BACHELORS),
        stages=(_years("f1", 1.5, 2, "1.5-2 yr", "Master's program"), _STUDENT_OPT),
        gc_start_offset_months=18,
        grants_education=Education.MASTERS,
    ),
    StatusRoute(
        route_id="student_phd",
        name="Student → PhD",
        description="Get a US PhD. Strong for NIW/EB-1A self-petition. Work on OPT while pursuing green card",
        valid_from=_STUDENT_FROM,
        requirements=Requirements(min_education=Education.BACHELORS, max_education=Education.MASTERS),
        stages=(_years("f1", 4, 6, "4-6 yr", "PhD program"), _STUDENT_OPT),
        gc_start_offset_months=48,
        grants_education=Education.PHD,
    ),
    StatusRoute(
        route_id="student_bachelors",
        name="Student → Bachelor's",
        description="Get a US Bachelor's degree, then work on OPT while pursuing green card",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.F1),
        requirements=Requirements(max_education=Education.HIGHSCHOOL),
        stages=(_years("f1", 4, 4, "4 yr", "Bachelor's program"), _STUDENT_OPT),
        gc_start_offset_months=48,
        grants_education=Education.BACHELORS,
    ),
    StatusRoute(
        route_id="tn_direct",
        name="TN Professional",
        description="TN visa for USMCA professionals. Canadians: apply at border (same day) or via I-129 change of status",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.TN, CurrentStatus.H1B, CurrentStatus.F1, CurrentStatus.OPT),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("tn", 2, 3, "2-3 yr", "Renewable indefinitely"),),
        gc_start_offset_months=0,
        requires_tn_eligibility=True,
    ),
    StatusRoute(
        route_id="opt_h1b",
        name="OPT → H-1B",
        description="Transition from OPT to H-1B via lottery while pursuing green card",
        valid_from=(CurrentStatus.F1, CurrentStatus.OPT),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("opt", 1, 1.5, "1-1.5 yr"), _years("h1b", 1, 2, "1-2 yr", "If lottery selected")),
        gc_start_offset_months=0,
    ),
    StatusRoute(
        route_id="h1b_direct",
        name="H-1B Direct",
        description="Continue on H-1B status while pursuing green card",
        valid_from=(CurrentStatus.H1B,),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("h1b", 1, 6, "1-6 yr"),),
        gc_start_offset_months=0,
    ),
    StatusRoute(
        route_id="opt_to_tn",
        name="OPT → TN",
        description="Use OPT initially, then get TN at border (requires quick trip to Canada). No lottery required",
        valid_from=(CurrentStatus.F1, CurrentStatus.OPT),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("opt", 0.5, 1, "6-12 mo", "Initial work authorization"),
                _years("tn", 2, 3, "2-3 yr", "Get TN at border")),
        gc_start_offset_months=0,
        requires_tn_eligibility=True,
    ),
    StatusRoute(
        route_id="tn_to_h1b",
        name="TN → H-1B",
        description="Start on TN, then switch to H-1B. H-1B allows dual intent for green card",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.TN),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("tn", 1, 2, "1-2 yr", "Initial TN status"),
                _years("h1b", 1, 3, "1-3 yr", "H-1B via lottery")),
        gc_start_offset_months=0,
        requires_tn_eligibility=True,
    ),
    StatusRoute(
        route_id="l1a",
        name="L-1A Executive",
        description="Intracompany transfer as executive/manager, then EB-1C green card",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.OTHER),
        requirements=Requirements(executive=True),
        stages=(_years("l1a", 1, 2, "1-2 yr", "Establish US role"),),
    ),
    StatusRoute(
        route_id="l1b",
        name="L-1B Specialized",
        description="Intracompany transfer with specialized knowledge. Requires PERM for green card",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.OTHER),
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(_years("l1b", 1, 5, "1-5 yr", "5-year max stay"),),
        gc_start_offset_months=6,
    ),
    StatusRoute(
        route_id="o1",
        name="O-1 Extraordinary",
        description="Work visa for extraordinary ability. Strong path to EB-1A green card",
        valid_from=(CurrentStatus.CANADA, CurrentStatus.TN, CurrentStatus.H1B, CurrentStatus.OPT, CurrentStatus.OTHER),
        requirements=Requirements(extraordinary_ability=True),
        stages=(_years("o1", 1, 3, "1-3 yr", "Renewable"),),
    ),
    StatusRoute(
        route_id="none",
        name="Direct Filing",
        description="File directly for green card without employer sponsorship",
        valid_from=_ALL_STATUSES,
        stages=(),
    ),
)

_CONCURRENT_I485 = _years("i485", 0.88, 1.5, "10-18 mo", "Concurrent with I-140", concurrent=True)
_EB1_PETITION = _years("eb1", 0.04, 0.75, "15d-9mo", "15 business days w/ premium")
_MARKER = StageTemplate(GREEN_CARD_STAGE, Duration.zero())

GC_METHODS: Tuple[GreenCardMethod, ...] = (
    GreenCardMethod(
        method_id="perm_route",
        name="PERM",
        description="Employer-sponsored labor certification, then I-140 and I-485",
        requires_perm=True,
        requirements=Requirements(min_education=Education.BACHELORS),
        stages=(
            _years("pwd", 0.42, 0.58, "5-7 mo"),
            _years("recruit", 0.17, 0.25, "2-3 mo"),
            _years("perm", 1.17, 1.5, "14-18 mo"),
            _years("i140", 0.04, 0.75, "15d-9mo", "15 business days w/ premium"),
            _years("i485", 0.88, 1.5, "10-18 mo", concurrent=True),
            _MARKER,
        ),
    ),
    GreenCardMethod(
        method_id="niw",
        name="EB-2 NIW",
        description="Self-petitioned National Interest Waiver",
        requirements=Requirements(min_education=Education.MASTERS),
        stages=(_years("eb2niw", 0.15, 0.75, "2-9 mo", "45 business days (~9 wks) w/ premium"),
                _CONCURRENT_I485, _MARKER),
        fixed_category="EB-2 NIW",
        bulletin_category=EBCategory.EB2,
        self_petition=True,
    ),
    GreenCardMethod(
        method_id="eb1a",
        name="EB-1A",
        description="Self-petitioned extraordinary ability",
        requirements=Requirements(extraordinary_ability=True),
        stages=(_EB1_PETITION, _CONCURRENT_I485, _MARKER),
        fixed_category="EB-1A",
        bulletin_category=EBCategory.EB1,
        self_petition=True,
    ),
    GreenCardMethod(
        method_id="eb1b",
        name="EB-1B",
        description="Employer-sponsored outstanding researcher",
        requirements=Requirements(outstanding_researcher=True, min_education=Education.MASTERS),
        stages=(_EB1_PETITION, _CONCURRENT_I485, _MARKER),
        fixed_category="EB-1B",
        bulletin_category=EBCategory.EB1,
    ),
    GreenCardMethod(
        method_id="eb1c",
        name="EB-1C",
        description="Multinational executive or manager",
        requirements=Requirements(executive=True),
        stages=(_EB1_PETITION, _CONCURRENT_I485, _MARKER),
        fixed_category="EB-1C",
        bulletin_category=EBCategory.EB1,
        only_with_routes=("l1a",),
    ),
    GreenCardMethod(
        method_id="marriage",
        name="Marriage",
        description="Immediate relative petition through a US citizen spouse",
        requirements=Requirements(married_to_us_citizen=True),
        stages=(_years("marriage", 0.7, 1.2, "8-14 mo", "I-130 + I-485 concurrent"),
                StageTemplate(GREEN_CARD_STAGE, Duration(0, 0, "Done!"))),
        fixed_category="Marriage-based",
        self_petition=True,
    ),
    GreenCardMethod(
        method_id="eb5",
        name="EB-5",
        description="Investor petition followed by conditional residence",
        requirements=Requirements(investment_capital=True),
        stages=(_years("eb5", 2, 3, "2-3 yr", "I-526E petition"),
                _years("i485", 1, 2, "1-2 yr", "Conditional GC"),
                StageTemplate(GREEN_CARD_STAGE, Duration(0, 0, "Done!"))),
        fixed_category="EB-5",
        bulletin_category=EBCategory.EB5,
        self_petition=True,
    ),
)


def validate_catalog(routes: Iterable[StatusRoute], methods: Iterable[GreenCardMethod]) -> None:
    """Every stage id referenced by a template must be defined in the catalog, on the right track."""
    for route in routes:
        for stage in route.stages:
            definition = STAGE_CATALOG.get(stage.stage_id)
            if definition is None or definition.track != Track.STATUS:
                raise DataIntegrityError(f"Route {route.route_id} references undefined status stage {stage.stage_id!r}")
    for method in methods:
        for stage in method.stages:
            definition = STAGE_CATALOG.get(stage.stage_id)
            if definition is None or definition.track != Track.GC:
                raise DataIntegrityError(f"Method {method.method_id} references undefined green-card stage {stage.stage_id!r}")


def stage_definition(stage_id: str) -> StageDefinition:
    try:
        return STAGE_CATALOG[stage_id]
    except KeyError:
        raise DataIntegrityError(f"Undefined stage: {stage_id!r}") from None


validate_catalog(STATUS_ROUTES, GC_METHODS)
