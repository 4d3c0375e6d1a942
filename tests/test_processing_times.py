from datetime import date

import pytest

from greencard.models import DataIntegrityError, Duration
from greencard.processing_times import (
    DEFAULT_PROCESSING_TIMES, DurationContext, ProcessingTimes, StageDurationResolver
)


def test_live_perm_range(resolver):
    duration = resolver.resolve_duration("perm")
    assert duration.min_months == pytest.approx(14)
    assert duration.max_months == pytest.approx(18)


def test_audited_perm_uses_audit_estimate(resolver):
    duration = resolver.resolve_duration("perm", DurationContext(perm_audited=True))
    assert duration.max_months == pytest.approx(24)


def test_live_pwd_range(resolver):
    duration = resolver.resolve_duration("pwd")
    assert duration.min_months == pytest.approx(4.8)
    assert duration.max_months == pytest.approx(7)


def test_i140_premium_and_regular(resolver):
    regular = resolver.resolve_duration("i140")
    assert regular.min_months == pytest.approx(0.5)
    assert regular.max_months == pytest.approx(9)

    premium = resolver.resolve_duration("i140", DurationContext(premium=True))
    assert premium.min_months == premium.max_months == pytest.approx(0.5)


def test_i485_averages_offices(resolver):
    duration = resolver.resolve_duration("i485")
    assert duration.min_months == pytest.approx(10)
    assert duration.max_months == pytest.approx(18)


def test_stale_data_falls_back_to_template(processing_times):
    resolver = StageDurationResolver(processing_times, as_of=date(2026, 1, 1), max_data_age_days=90)
    assert not resolver.has_live_data

    template = Duration(12, 20)
    assert resolver.resolve_duration("perm", DurationContext(template_default=template)) == template


def test_missing_data_falls_back_to_static(static_resolver):
    duration = static_resolver.resolve_duration("perm")
    assert duration.min_months == pytest.approx(12)
    assert duration.max_months == pytest.approx(20)


def test_incomplete_snapshot_falls_back_per_stage():
    partial = ProcessingTimes.from_dict({"lastUpdated": "2025-01-01", "dol": {"pwd": {"estimatedMonths": 5}}})
    resolver = StageDurationResolver(partial, as_of=date(2025, 1, 15))
    assert resolver.resolve_duration("pwd").max_months == pytest.approx(6)
    assert resolver.resolve_duration("i485").max_months == pytest.approx(24)


def test_opt_uses_stem_flag(static_resolver):
    assert static_resolver.resolve_duration("opt", DurationContext(is_stem=True)).max_months == 36
    assert static_resolver.resolve_duration("opt", DurationContext(is_stem=False)).max_months == 12


def test_queue_wait_is_not_resolved_here(resolver):
    with pytest.raises(DataIntegrityError):
        resolver.resolve_duration("priority_wait")


def test_unknown_stage_is_a_defect(resolver):
    with pytest.raises(DataIntegrityError):
        resolver.resolve_duration("i999")


def test_resolved_ranges_are_never_inverted(resolver, static_resolver):
    for stage_id in ("pwd", "recruit", "perm", "i140", "eb1", "eb2niw", "i485", "marriage", "eb5",
                     "h1b", "tn", "f1", "opt", "gc"):
        for r in (resolver, static_resolver):
            duration = r.resolve_duration(stage_id)
            assert 0 <= duration.min_months <= duration.max_months


def test_malformed_rows_are_dropped():
    times = ProcessingTimes.from_dict({
        "uscis": {"I-485": [
            {"serviceCenter": "Bad", "processingTime": {"min": 20, "max": 10}},
            {"serviceCenter": "Missing", "processingTime": {}},
            {"serviceCenter": "Good", "processingTime": {"min": 8, "max": 12}},
        ]},
        "dol": {"pwd": {"estimatedMonths": "soon"}},
    })
    assert [t.service_center for t in times.form_times("I-485")] == ["Good"]
    assert times.pwd is None


def test_currently_processing_labels(resolver, static_resolver):
    assert resolver.currently_processing("pwd") == "June 2024"
    assert resolver.currently_processing("perm", audited=True) == "March 2023"
    assert static_resolver.currently_processing("perm") is None


def test_default_snapshot_exports(processing_times):
    frame = DEFAULT_PROCESSING_TIMES.to_dataframe()
    assert set(frame['agency']) == {"USCIS", "DOL"}
    assert len(processing_times.to_dataframe()) == 4 + 3
