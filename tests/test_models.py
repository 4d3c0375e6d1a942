from datetime import date

import pytest

from greencard.bulletin import BulletinData
from greencard.dates import CURRENT, add_months, months_between, parse_cutoff, parse_iso_date
from greencard.models import (
    BulletinChart, CaseRoute, Country, CurrentStatus, DataIntegrityError, Duration, EBCategory,
    Education, Profile, ProgressRecord, StageProgress, StageStatus, TrackedCase, format_duration
)


@pytest.mark.parametrize("low, high", [(5, 3), (-1, 2), (float('nan'), 2), (0, float('inf'))])
def test_invalid_durations_are_rejected(low, high):
    with pytest.raises(DataIntegrityError):
        Duration(low, high)


def test_duration_display():
    assert Duration(5, 7).display == "5-7 mo"
    assert Duration(0.5, 9).display == "15d-9 mo"
    assert Duration.from_years(2, 3).display == "2.0-3.0 yr"
    assert Duration.zero().display == "0 mo"
    assert Duration(1, 2, "custom").display == "custom"
    assert format_duration(6, 6) == "6 mo"


def test_eb_category_parsing():
    assert EBCategory.parse("eb2") == EBCategory.EB2
    assert EBCategory.parse("EB-3") == EBCategory.EB3
    with pytest.raises(DataIntegrityError):
        EBCategory.parse("EB-7")


def test_stage_status_legacy_values():
    assert StageStatus.parse("pending") == StageStatus.FILED
    assert StageStatus.parse("approved") == StageStatus.APPROVED
    assert StageStatus.parse("???") == StageStatus.NOT_STARTED


def test_profile_from_camel_case():
    profile = Profile.from_dict({
        "currentStatus": "h1b",
        "education": "masters",
        "experience": "2to5",
        "countryOfBirth": "india",
        "isStem": True,
        "isCanadianOrMexicanCitizen": False,
        "existingPriorityDate": "2019-04-10",
        "existingPriorityDateCategory": "eb2",
        "unrelated": "ignored",
    })
    assert profile.current_status == CurrentStatus.H1B
    assert profile.education == Education.MASTERS
    assert profile.country_of_birth == Country.INDIA
    assert profile.existing_priority_date == date(2019, 4, 10)
    assert profile.existing_priority_date_category == EBCategory.EB2


def test_profile_needs_perm():
    assert Profile().needs_perm
    assert not Profile(has_approved_i140=True).needs_perm
    assert Profile(has_approved_i140=True, needs_new_perm=True).needs_perm


def test_progress_record_tolerates_malformed_dates():
    record = ProgressRecord.from_dict({
        "stages": {
            "perm": {"status": "filed", "filedDate": "not-a-date"},
            "i140": {"status": "approved", "filedDate": "2023-02-01", "priorityDate": "2022-11-15"},
        },
        "portedPriorityDate": "2020-06-01",
        "portedPriorityDateCategory": "EB-2",
    })
    assert record.get("perm").status == StageStatus.FILED
    assert record.get("perm").filed_date is None
    assert record.get("i140").priority_date == date(2022, 11, 15)
    assert record.get("i485") == StageProgress()
    assert record.ported_priority_date == date(2020, 6, 1)
    assert record.ported_category == EBCategory.EB2


def test_progress_updates_return_new_records():
    record = ProgressRecord()
    updated = record.with_stage("perm", StageProgress(status=StageStatus.FILED))
    assert record.stages == {}
    assert updated.get("perm").status == StageStatus.FILED
    assert updated.with_ported_priority_date(date(2020, 1, 1)).ported_priority_date == date(2020, 1, 1)


def test_tracked_case_from_dict():
    case = TrackedCase.from_dict({
        "route": "niw",
        "countryOfBirth": "china",
        "ebCategory": "eb2",
        "i140FiledDate": "2024-05-01",
        "i140Premium": False,
        "receipts": [{"form": "I-140", "receiptNumber": "IOE0912345678"}],
    })
    assert case.route == CaseRoute.NIW
    assert case.country_of_birth == Country.CHINA
    assert case.i140_filed_date == date(2024, 5, 1)
    assert not case.i140_premium
    assert case.receipts == {"I-140": "IOE0912345678"}


def test_cutoff_formats():
    assert parse_cutoff("C") == CURRENT
    assert parse_cutoff("01FEB23") == date(2023, 2, 1)
    assert parse_cutoff("01JAN99") == date(1999, 1, 1)
    assert parse_cutoff("15MAR50") == date(2050, 3, 15)
    assert parse_cutoff("Jul 2013") == date(2013, 7, 1)
    assert parse_cutoff("2012-05-01") == date(2012, 5, 1)
    assert parse_cutoff("U") is None
    assert parse_iso_date("2024-13-40") is None


def test_month_arithmetic_round_trips():
    start = date(2024, 3, 1)
    assert months_between(start, add_months(start, 10)) == pytest.approx(10, abs=0.05)
    assert months_between(date(2025, 1, 1), date(2024, 1, 1)) < 0


def test_bulletin_lookup_fallbacks():
    bulletin = BulletinData.from_dict({
        "finalActionDates": {"EB-2": {"allOther": "01APR24", "india": "01JUL13"}},
        "datesForFiling": {"EB-2": {"india": "01JAN14"}},
    })
    assert bulletin.cell(EBCategory.EB2, Country.CANADA) == "01APR24"
    assert bulletin.cell(EBCategory.EB2, Country.INDIA, BulletinChart.DATES_FOR_FILING) == "01JAN14"
    assert bulletin.cell(EBCategory.EB3, Country.INDIA, BulletinChart.DATES_FOR_FILING) is None
    assert bulletin.cutoff(EBCategory.EB2, Country.INDIA) == date(2013, 7, 1)
    assert len(bulletin.to_dataframe()) == 3
