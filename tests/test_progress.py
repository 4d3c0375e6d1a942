from datetime import date

import pytest

from greencard.bulletin import BulletinData
from greencard.composer import generate_paths
from greencard.models import (
    CaseRoute, Country, Duration, EBCategory, ProgressRecord, StageProgress, StageStatus, TrackedCase
)
from greencard.progress import (
    effective_priority_date, priority_date_aging, reanchor, remaining_range
)
from greencard.tracker import build_tracked_case_path


NOW = date(2025, 1, 1)


@pytest.fixture
def perm_path(indian_h1b_profile, resolver, velocity_model, bulletin, config):
    paths = generate_paths(indian_h1b_profile, resolver, velocity_model, bulletin, config)
    return next(p for p in paths if p.path_id == "h1b_direct_perm_route")


@pytest.fixture
def static_perm_path(indian_h1b_profile, static_resolver, velocity_model, config):
    paths = generate_paths(indian_h1b_profile, static_resolver, velocity_model, None, config)
    return next(p for p in paths if p.path_id == "h1b_direct_perm_route")


def _filed(filed_date, **kwargs):
    return StageProgress(status=StageStatus.FILED, filed_date=filed_date, **kwargs)


def _approved(**kwargs):
    return StageProgress(status=StageStatus.APPROVED, **kwargs)


def test_perm_filed_ten_months_ago_has_eight_months_left(perm_path):
    assert perm_path.stage("perm").duration.max_months == pytest.approx(18)
    progress = ProgressRecord(stages={
        "pwd": _approved(),
        "recruit": _approved(),
        "perm": _filed(date(2024, 3, 1)),
    })
    result = reanchor(perm_path, progress, NOW)
    assert result.remaining_months["perm"] == pytest.approx(8, abs=0.1)
    assert result.anchored_to_now


@pytest.mark.parametrize("filed", [date(2030, 6, 1), date(1990, 1, 1), date(2024, 12, 31)])
def test_remaining_never_negative(perm_path, filed):
    progress = ProgressRecord(stages={stage.stage_id: _filed(filed) for stage in perm_path.gc_stages})
    result = reanchor(perm_path, progress, NOW)
    assert all(value >= 0 for value in result.remaining_months.values())
    assert result.total_remaining_months >= 0
    for stage in result.path.gc_stages:
        assert 0 <= stage.duration.min_months <= stage.duration.max_months


def test_future_filed_date_counts_as_no_elapsed_time():
    duration = Duration(14, 18)
    assert remaining_range(duration, date(2026, 1, 1), NOW) == (14, 18)
    assert remaining_range(duration, date(1990, 1, 1), NOW) == (0, 0)
    assert remaining_range(duration, None, NOW) == (14, 18)


def test_approved_stage_contributes_zero(perm_path):
    progress = ProgressRecord(stages={
        "pwd": _approved(filed_date=date(2035, 1, 1)),
        "recruit": _approved(),
    })
    result = reanchor(perm_path, progress, NOW)
    assert result.remaining_months["pwd"] == 0
    assert result.remaining_months["recruit"] == 0
    assert result.path.stage("perm").start_months == 0


def test_no_progress_keeps_original_offsets(static_perm_path):
    result = reanchor(static_perm_path, ProgressRecord(), NOW)
    assert not result.anchored_to_now
    for original, rebased in zip(static_perm_path.gc_stages, result.path.gc_stages):
        assert rebased.start_months == pytest.approx(original.start_months)
    assert result.total_remaining_months == pytest.approx(static_perm_path.total.max_months)


def test_concurrent_stage_is_bounded_not_added(static_perm_path):
    progress = ProgressRecord(stages={
        "pwd": _approved(), "recruit": _approved(), "perm": _approved(),
        "i140": _filed(NOW), "i485": _filed(NOW),
    })
    result = reanchor(static_perm_path, progress, NOW)
    i140 = result.remaining_months["i140"]
    i485 = result.remaining_months["i485"]
    assert result.path.stage("i485").start_months == result.path.stage("i140").start_months
    assert result.total_remaining_months == pytest.approx(max(i140, i485))


def test_effective_priority_date_is_minimum(perm_path):
    ported = date(2011, 1, 1)
    established = date(2012, 3, 1)

    both = ProgressRecord(stages={"perm": _approved(filed_date=established)}, ported_priority_date=ported)
    assert effective_priority_date(perm_path, both) == (ported, "ported")

    only_stage = ProgressRecord(stages={"perm": _approved(filed_date=established)})
    assert effective_priority_date(perm_path, only_stage) == (established, "perm")

    explicit = ProgressRecord(stages={"i140": _approved(filed_date=date(2013, 1, 1), priority_date=date(2010, 6, 1))},
                              ported_priority_date=ported)
    assert effective_priority_date(perm_path, explicit) == (date(2010, 6, 1), "i140")

    filed_only = ProgressRecord(stages={"perm": _filed(established)})
    assert effective_priority_date(perm_path, filed_only) == (None, None)


def test_current_priority_date_resolves_queue_wait(perm_path, velocity_model, bulletin):
    assert perm_path.stage("priority_wait") is not None
    progress = ProgressRecord(
        stages={"pwd": _approved(), "recruit": _approved(), "perm": _approved(filed_date=date(2024, 2, 1)),
                "i140": _approved(filed_date=date(2024, 9, 1))},
        ported_priority_date=date(2011, 1, 1),
    )
    result = reanchor(perm_path, progress, NOW, velocity_model, bulletin)

    wait = result.path.stage("priority_wait")
    assert wait is not None
    assert wait.resolved
    assert result.remaining_months["priority_wait"] == 0
    assert result.effective_priority_date == date(2011, 1, 1)
    assert result.priority_date_source == "ported"
    assert result.path.priority_date == date(2011, 1, 1)


def test_open_wait_without_models_keeps_estimate(perm_path):
    progress = ProgressRecord(stages={"pwd": _approved()}, ported_priority_date=date(2011, 1, 1))
    result = reanchor(perm_path, progress, NOW)
    assert result.remaining_months["priority_wait"] == pytest.approx(
        perm_path.stage("priority_wait").duration.max_months)


def test_unknown_stage_ids_are_ignored(perm_path, caplog):
    progress = ProgressRecord(stages={"bogus": _filed(date(2024, 1, 1))})
    result = reanchor(perm_path, progress, NOW)
    assert "bogus" not in result.remaining_months
    assert not result.anchored_to_now
    assert "bogus" in caplog.text


def test_priority_date_aging(static_perm_path):
    assert priority_date_aging(static_perm_path, ProgressRecord(), NOW) is None

    ported = ProgressRecord(ported_priority_date=date(2019, 1, 1))
    months = priority_date_aging(static_perm_path, ported, NOW)
    assert months == pytest.approx(static_perm_path.stage("i485").start_months, abs=0.1)

    nearly_done = ProgressRecord(
        stages={"pwd": _approved(), "recruit": _approved(), "perm": _approved(), "i140": _approved()},
        ported_priority_date=date(2019, 1, 1),
    )
    assert priority_date_aging(static_perm_path, nearly_done, NOW) is None


def test_reanchored_export(perm_path):
    result = reanchor(perm_path, ProgressRecord(stages={"pwd": _approved()}), NOW)
    frame = result.to_dataframe()
    assert list(frame['stage_id']) == [s.stage_id for s in perm_path.gc_stages]


def _row_bulletin(final_action, filing):
    return BulletinData.from_dict({
        "finalActionDates": {"EB-2": {"allOther": final_action}},
        "datesForFiling": {"EB-2": {"allOther": filing}},
    })


def _row_path(indian_h1b_profile, resolver, velocity_model, bulletin, config):
    profile = indian_h1b_profile.with_changes(country_of_birth=Country.OTHER)
    paths = generate_paths(profile, resolver, velocity_model, bulletin, config)
    return next(p for p in paths if p.path_id == "h1b_direct_perm_route")


def _pre_adjustment_approved(path, **perm_kwargs):
    stages = {s.stage_id: _approved() for s in path.gc_stages
              if s.stage_id in ("pwd", "recruit", "i140", "priority_wait")}
    stages["perm"] = _approved(**perm_kwargs)
    return stages


def test_final_action_wait_outlasts_pending_adjustment(indian_h1b_profile, resolver, velocity_model, config):
    bulletin = _row_bulletin(final_action="2024-01-01", filing="Current")
    path = _row_path(indian_h1b_profile, resolver, velocity_model, bulletin, config)
    assert path.stage("i485").base_duration is None

    stages = _pre_adjustment_approved(path)
    stages["i485"] = _filed(date(2024, 2, 1))
    progress = ProgressRecord(stages=stages, ported_priority_date=date(2024, 12, 1))
    result = reanchor(path, progress, NOW, velocity_model, bulletin)

    final = velocity_model.estimate_wait(date(2024, 12, 1), "2024-01-01", Country.OTHER, EBCategory.EB2)
    _, processing_left = remaining_range(Duration(10, 18), date(2024, 2, 1), NOW)
    assert final.estimated_months > processing_left
    assert result.remaining_months["i485"] == pytest.approx(final.estimated_months)
    assert result.total_remaining_months == pytest.approx(final.estimated_months)
    assert result.path.marker.start_months == pytest.approx(final.estimated_months)


def test_approved_adjustment_ignores_final_action_wait(indian_h1b_profile, resolver, velocity_model, config):
    bulletin = _row_bulletin(final_action="2024-01-01", filing="Current")
    path = _row_path(indian_h1b_profile, resolver, velocity_model, bulletin, config)
    stages = _pre_adjustment_approved(path)
    stages["i485"] = _approved()
    progress = ProgressRecord(stages=stages, ported_priority_date=date(2024, 12, 1))
    assert reanchor(path, progress, NOW, velocity_model, bulletin).total_remaining_months == 0


def test_filed_adjustment_closes_filing_wait(indian_h1b_profile, resolver, velocity_model, config):
    bulletin = _row_bulletin(final_action="2017-01-01", filing="2018-01-01")
    path = _row_path(indian_h1b_profile, resolver, velocity_model, bulletin, config)
    assert path.stage("priority_wait") is not None

    stages = _pre_adjustment_approved(path, filed_date=date(2024, 6, 1))
    del stages["priority_wait"]
    stages["i485"] = _filed(date(2024, 8, 1))
    result = reanchor(path, ProgressRecord(stages=stages), NOW, velocity_model, bulletin)

    wait = result.path.stage("priority_wait")
    assert wait.resolved
    assert result.remaining_months["priority_wait"] == 0
    assert result.path.stage("i485").start_months == 0

    final = velocity_model.estimate_wait(date(2024, 6, 1), "2017-01-01", Country.OTHER, EBCategory.EB2)
    assert result.total_remaining_months == pytest.approx(final.estimated_months)

    case = TrackedCase(route=CaseRoute.PERM, country_of_birth=Country.OTHER, category=EBCategory.EB2,
                       perm_filed_date=date(2024, 6, 1), perm_approved_date=date(2024, 6, 1),
                       i140_filed_date=date(2024, 7, 1), i140_approved_date=date(2024, 7, 15),
                       i485_filed_date=date(2024, 8, 1))
    tracked = build_tracked_case_path(case, resolver, velocity_model, bulletin, NOW)
    assert result.total_remaining_months == pytest.approx(tracked.total.max_months, abs=0.01)
