# src/greencard/eligibility.py
"""
Eligibility filter: which pathway templates a profile can legally pursue.
Pure predicate logic over the profile and the static template catalog.
"""
import logging
from typing import Iterable, List, Optional

from .models import (
    Country, EBCategory, Education, Experience, GreenCardMethod, PathwayTemplate,
    Profile, Requirements, StatusRoute
)
from .templates import GC_METHODS, STATUS_ROUTES

logger = logging.getLogger(__name__)


def is_tn_eligible(profile: Profile) -> bool:
    """TN requires Canadian or Mexican citizenship; birth country stands in unless overridden."""
    return (
        profile.country_of_birth in (Country.CANADA, Country.MEXICO)
        or profile.treaty_citizen
    )


def meets_requirements(
    profile: Profile,
    requirements: Requirements,
    education: Optional[Education] = None,
    allow_bachelors_plus_experience: bool = False
) -> bool:
    """
    Check a profile against a requirement set.

    Args:
        profile: Person being evaluated
        requirements: Requirement set from a route or method
        education: Education to evaluate instead of the profile's (degree granted by a student route)
        allow_bachelors_plus_experience: Let a bachelor's with 5+ years stand in for a master's

    Returns:
        True when every requirement holds
    """
    education = education or profile.education

    if requirements.min_education is not None and education.rank < requirements.min_education.rank:
        substitutes = (
            allow_bachelors_plus_experience
            and requirements.min_education == Education.MASTERS
            and education == Education.BACHELORS
            and profile.experience == Experience.GT5
        )
        if not substitutes:
            return False
    if requirements.max_education is not None and education.rank > requirements.max_education.rank:
        return False
    if requirements.min_experience is not None and profile.experience.rank < requirements.min_experience.rank:
        return False

    if requirements.extraordinary_ability and not profile.extraordinary_ability:
        return False
    if requirements.outstanding_researcher and not profile.outstanding_researcher:
        return False
    if requirements.executive and not profile.executive:
        return False
    if requirements.married_to_us_citizen and not profile.married_to_us_citizen:
        return False
    if requirements.investment_capital and not profile.investment_capital:
        return False
    return True


def is_route_available(route: StatusRoute, profile: Profile) -> bool:
    if profile.current_status not in route.valid_from:
        return False
    if not meets_requirements(profile, route.requirements):
        return False
    if route.requires_tn_eligibility and not is_tn_eligible(profile):
        return False
    return True


def is_compatible(route: StatusRoute, method: GreenCardMethod, profile: Profile) -> bool:
    """Whether a green-card method can follow a status route for this profile."""
    if method.requires_perm and (route.gc_start_offset_months is None or route.is_direct):
        return False
    if method.only_with_routes and route.route_id not in method.only_with_routes:
        return False
    education = route.grants_education or profile.education
    return meets_requirements(profile, method.requirements, education, allow_bachelors_plus_experience=True)


def compute_gc_category(profile: Profile, route: StatusRoute, method: GreenCardMethod) -> str:
    """Fixed category if the method has one, otherwise EB-2 or EB-3 from (granted) education."""
    if method.fixed_category:
        return method.fixed_category

    education = route.grants_education or profile.education
    if education in (Education.MASTERS, Education.PHD):
        return EBCategory.EB2.value
    if education == Education.BACHELORS and profile.experience == Experience.GT5:
        return EBCategory.EB2.value
    return EBCategory.EB3.value


def filter_pathways(
    profile: Profile,
    routes: Iterable[StatusRoute] = STATUS_ROUTES,
    methods: Iterable[GreenCardMethod] = GC_METHODS
) -> List[PathwayTemplate]:
    """
    Enumerate every pathway template available to a profile.

    Order follows the catalog (routes, then methods within each route), so the
    same profile always yields the same list.
    """
    methods = tuple(methods)
    templates = []

    for route in routes:
        if not is_route_available(route, profile):
            continue
        for method in methods:
            if not is_compatible(route, method, profile):
                continue
            gc_category = compute_gc_category(profile, route, method)
            if method.fixed_category:
                bulletin_category = method.bulletin_category
            else:
                bulletin_category = EBCategory.parse(gc_category)
            templates.append(PathwayTemplate(route, method, gc_category, bulletin_category))

    logger.debug(f"Eligible pathways for profile: {[t.template_id for t in templates]}")
    return templates
