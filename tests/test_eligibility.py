from greencard.eligibility import compute_gc_category, filter_pathways, is_tn_eligible, meets_requirements
from greencard.models import (
    Country, CurrentStatus, EBCategory, Education, Experience, Profile, Requirements
)
from greencard.templates import GC_METHODS, STATUS_ROUTES


def _ids(templates):
    return {t.template_id for t in templates}


def test_indian_h1b_masters_gets_perm_and_niw(indian_h1b_profile):
    templates = filter_pathways(indian_h1b_profile)
    ids = _ids(templates)

    assert "h1b_direct_perm_route" in ids
    assert any(t.method.method_id == "niw" for t in templates)

    perm = next(t for t in templates if t.template_id == "h1b_direct_perm_route")
    assert perm.gc_category == "EB-2"
    assert perm.bulletin_category == EBCategory.EB2


def test_indian_h1b_excludes_investor_and_marriage(indian_h1b_profile):
    methods = {t.method.method_id for t in filter_pathways(indian_h1b_profile)}
    assert "eb5" not in methods
    assert "marriage" not in methods
    assert "eb1a" not in methods


def test_tn_route_follows_treaty_citizenship(canadian_profile):
    assert "tn_direct_perm_route" in _ids(filter_pathways(canadian_profile))

    other = canadian_profile.with_changes(country_of_birth=Country.OTHER)
    assert not any(t.route.requires_tn_eligibility for t in filter_pathways(other))

    treaty = other.with_changes(treaty_citizen=True)
    assert "tn_direct_perm_route" in _ids(filter_pathways(treaty))


def test_tn_eligibility_for_mexico():
    assert is_tn_eligible(Profile(country_of_birth=Country.MEXICO))
    assert not is_tn_eligible(Profile(country_of_birth=Country.INDIA))


def test_filter_is_idempotent(indian_h1b_profile):
    first = [t.template_id for t in filter_pathways(indian_h1b_profile)]
    second = [t.template_id for t in filter_pathways(indian_h1b_profile)]
    assert first == second


def test_special_flags_unlock_methods(canadian_profile):
    profile = canadian_profile.with_changes(
        extraordinary_ability=True, married_to_us_citizen=True, investment_capital=True
    )
    methods = {t.method.method_id for t in filter_pathways(profile)}
    assert {"eb1a", "marriage", "eb5"} <= methods


def test_marriage_path_has_no_queue_category():
    profile = Profile(married_to_us_citizen=True)
    marriage = [t for t in filter_pathways(profile) if t.method.method_id == "marriage"]
    assert marriage
    assert all(t.bulletin_category is None for t in marriage)
    assert all(t.gc_category == "Marriage-based" for t in marriage)


def test_eb1c_requires_l1a_route():
    profile = Profile(current_status=CurrentStatus.OTHER, executive=True)
    eb1c = [t for t in filter_pathways(profile) if t.method.method_id == "eb1c"]
    assert eb1c
    assert all(t.route.route_id == "l1a" for t in eb1c)


def test_student_route_grants_degree_for_category():
    profile = Profile(current_status=CurrentStatus.F1, education=Education.BACHELORS)
    route = next(r for r in STATUS_ROUTES if r.route_id == "student_masters")
    perm = next(m for m in GC_METHODS if m.method_id == "perm_route")
    assert compute_gc_category(profile, route, perm) == "EB-2"


def test_bachelors_with_experience_counts_as_advanced_degree():
    reqs = Requirements(min_education=Education.MASTERS)
    profile = Profile(education=Education.BACHELORS, experience=Experience.GT5)
    assert not meets_requirements(profile, reqs)
    assert meets_requirements(profile, reqs, allow_bachelors_plus_experience=True)


def test_bachelors_without_experience_is_eb3():
    profile = Profile(current_status=CurrentStatus.H1B, education=Education.BACHELORS,
                      country_of_birth=Country.OTHER)
    perm = next(t for t in filter_pathways(profile) if t.template_id == "h1b_direct_perm_route")
    assert perm.gc_category == "EB-3"
    assert perm.bulletin_category == EBCategory.EB3
