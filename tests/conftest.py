from datetime import date

import pytest

from greencard.bulletin import BulletinData
from greencard.models import (
    Country, CurrentStatus, Education, Experience, ForecastConfig, Profile
)
from greencard.processing_times import ProcessingTimes, StageDurationResolver
from greencard.velocity import VelocityModel


AS_OF = date(2025, 1, 1)


@pytest.fixture
def as_of():
    return AS_OF


@pytest.fixture
def indian_h1b_profile():
    return Profile(
        current_status=CurrentStatus.H1B,
        education=Education.MASTERS,
        experience=Experience.TWO_TO_FIVE,
        country_of_birth=Country.INDIA,
        is_stem=True,
    )


@pytest.fixture
def canadian_profile():
    return Profile(
        current_status=CurrentStatus.CANADA,
        education=Education.BACHELORS,
        experience=Experience.TWO_TO_FIVE,
        country_of_birth=Country.CANADA,
    )


@pytest.fixture
def processing_times():
    return ProcessingTimes.from_dict({
        "lastUpdated": "2024-12-15",
        "uscis": {
            "I-140": [
                {"serviceCenter": "Texas", "processingTime": {"min": 6, "max": 9}},
                {"serviceCenter": "Premium", "processingTime": {"min": 0.5, "max": 0.5}},
            ],
            "I-485": [
                {"serviceCenter": "Texas", "processingTime": {"min": 8, "max": 16}},
                {"serviceCenter": "Nebraska", "processingTime": {"min": 12, "max": 20}},
            ],
        },
        "dol": {
            "pwd": {"estimatedMonths": 6, "currentlyProcessing": "June 2024"},
            "perm": {
                "analystReview": {"estimatedMonths": 16, "currentlyProcessing": "August 2023"},
                "auditReview": {"estimatedMonths": 22, "currentlyProcessing": "March 2023"},
            },
        },
    })


@pytest.fixture
def resolver(processing_times):
    return StageDurationResolver(processing_times, as_of=AS_OF, max_data_age_days=90)


@pytest.fixture
def static_resolver():
    return StageDurationResolver(as_of=AS_OF)


@pytest.fixture
def velocity_model():
    return VelocityModel()


@pytest.fixture
def bulletin():
    return BulletinData.from_dict({
        "publishedDate": "2025-01-01",
        "finalActionDates": {
            "EB-1": {"allOther": "Current", "india": "01FEB22", "china": "01NOV22"},
            "EB-2": {"allOther": "2023-03-15", "india": "2012-05-01", "china": "2020-03-22"},
            "EB-3": {"allOther": "2022-12-01", "india": "2012-11-01", "china": "2020-09-01"},
        },
        "datesForFiling": {
            "EB-1": {"allOther": "Current", "india": "01APR22", "china": "01JAN23"},
            "EB-2": {"allOther": "2023-10-01", "india": "2013-01-01", "china": "2021-01-01"},
            "EB-3": {"allOther": "2023-07-01", "india": "2013-06-08", "china": "2021-01-01"},
        },
    })


@pytest.fixture
def config():
    return ForecastConfig(as_of=AS_OF)
