# src/greencard/empirical_params.py
"""
Empirical parameters for green-card forecasting.
Statutory limits, demand assumptions, historical visa bulletin movement,
filing fees and static processing-time fallbacks.
"""
from typing import Dict, List, Tuple
import logging

from .models import EBCategory

logger = logging.getLogger(__name__)

# Statutory supply
ANNUAL_EB_VISA_LIMIT = 140_000  # Employment-based visas per fiscal year (INA 201(d))
PER_COUNTRY_CAP_SHARE = 0.07  # 7% per-country limit

# EB category statutory shares (from US law)
EB_CATEGORY_STATUTORY_SHARES = {
    EBCategory.EB1: 0.286,  # 28.6% for priority workers
    EBCategory.EB2: 0.286,  # 28.6% for advanced degree professionals
    EBCategory.EB3: 0.286,  # 28.6% for skilled workers
    EBCategory.EB4: 0.071,  # 7.1% for special immigrants
    EBCategory.EB5: 0.071   # 7.1% for investors
}

# Categories whose wait is driven by the visa bulletin queue model
QUEUE_CATEGORIES = (EBCategory.EB1, EBCategory.EB2, EBCategory.EB3)

# Typical spillover from under-used categories (FY2020-2024 average)
TYPICAL_SPILLOVER = {
    EBCategory.EB1: 0,
    EBCategory.EB2: 5_000,
    EBCategory.EB3: 8_000,
}

# Demand assumptions
AVG_DEPENDENTS_MULTIPLIER = 2.5  # Principal + spouse + children per approved petition

# Share of employment-based demand by country of birth (PERM certifications, FY2024)
COUNTRY_DEMAND_DISTRIBUTION = {
    "india": 0.72,
    "china": 0.10,
    "other": 0.18,  # Residual share, also used for Canada and Mexico
}

# DOL PERM certifications (FY2024 disclosure data)
PERM_ANNUAL_CERTIFICATIONS = 155_000
PERM_LATEST_QUARTER = {
    "total": 38_000,
    "professional": 26_000,  # Bachelor's or higher: EB-2/EB-3 professional
    "skilled": 10_000,
    "other": 2_000,
}
EB1_DEMAND_SHARE = 0.05  # EB-1 petitions are not PERM-based; fixed share of demand

# Visa bulletin advancement model
DEFAULT_ADVANCEMENT_MONTHS_PER_YEAR = 12.0
MIN_ADVANCEMENT_MONTHS_PER_YEAR = 1.0
MAX_ADVANCEMENT_MONTHS_PER_YEAR = 18.0
CURRENT_TO_CURRENT_ADVANCEMENT = 12.0  # Both bulletins current
BECAME_CURRENT_ADVANCEMENT = 24.0  # Date -> Current
MAX_WAIT_MONTHS = 600  # 50 years; beyond this the wait is effectively indefinite

COUNTRY_CONFIDENCE = {
    "india": 0.8,  # Most predictable, consistent movement
    "china": 0.7,  # Some volatility
    "other": 0.6,  # ROW can retrogress abruptly
}
CAPPED_CONFIDENCE = 0.3
UNPARSEABLE_CUTOFF_CONFIDENCE = 0.3

# January Final Action Dates, 2020-2025 (travel.state.gov)
HISTORICAL_BULLETIN_DATA: Dict[EBCategory, Dict[str, List[Tuple[str, str]]]] = {
    EBCategory.EB1: {
        "india": [("January 2020", "Current"), ("January 2021", "Current"), ("January 2022", "Jan 2021"),
                  ("January 2023", "Jan 2022"), ("January 2024", "Jan 2022"), ("January 2025", "Feb 2023")],
        "china": [("January 2020", "Current"), ("January 2021", "Current"), ("January 2022", "Nov 2020"),
                  ("January 2023", "Feb 2022"), ("January 2024", "Jan 2022"), ("January 2025", "Feb 2023")],
        "other": [("January 2020", "Current"), ("January 2021", "Current"), ("January 2022", "Current"),
                  ("January 2023", "Current"), ("January 2024", "Current"), ("January 2025", "Current")],
    },
    EBCategory.EB2: {
        "india": [("January 2020", "Apr 2009"), ("January 2021", "Jun 2009"), ("January 2022", "Apr 2010"),
                  ("January 2023", "Aug 2011"), ("January 2024", "Jun 2012"), ("January 2025", "Jul 2013")],
        "china": [("January 2020", "Dec 2016"), ("January 2021", "May 2017"), ("January 2022", "Sep 2018"),
                  ("January 2023", "Nov 2019"), ("January 2024", "Jul 2020"), ("January 2025", "Sep 2021")],
        "other": [("January 2020", "Current"), ("January 2021", "Current"), ("January 2022", "Current"),
                  ("January 2023", "Current"), ("January 2024", "Nov 2023"), ("January 2025", "Apr 2024")],
    },
    EBCategory.EB3: {
        "india": [("January 2020", "Jan 2009"), ("January 2021", "Jun 2009"), ("January 2022", "Oct 2010"),
                  ("January 2023", "Sep 2011"), ("January 2024", "Oct 2012"), ("January 2025", "Nov 2013")],
        "china": [("January 2020", "Jan 2017"), ("January 2021", "May 2018"), ("January 2022", "Mar 2019"),
                  ("January 2023", "Aug 2019"), ("January 2024", "Mar 2020"), ("January 2025", "May 2021")],
        "other": [("January 2020", "Mar 2019"), ("January 2021", "Current"), ("January 2022", "Current"),
                  ("January 2023", "Jan 2022"), ("January 2024", "Nov 2022"), ("January 2025", "Apr 2023")],
    },
}

# Filing fees per stage in USD (USCIS fee schedule, April 2024)
I129_H1B_FEES = 780 + 1_500 + 500 + 600  # Base + ACWIA + fraud prevention + asylum program
STAGE_FILING_FEES = {
    "h1b": I129_H1B_FEES,
    "o1": 1_055,
    "l1a": 1_385,
    "l1b": 1_385,
    "f1": 185 + 350,  # DS-160 + SEVIS I-901
    "opt": 260,  # I-765
    "i140": 715,
    "eb1": 715,
    "eb2niw": 715,
    "i485": 1_440,
    "marriage": 625,  # I-130
}
PREMIUM_PROCESSING_FEE = 2_805  # I-907

# Static processing times in months (fallback when live data is missing or stale)
STATIC_STAGE_DURATIONS = {
    "pwd": (5, 8),
    "recruit": (2, 3),
    "perm": (12, 20),
    "i140": (0.5, 12),
    "i485": (8, 24),
    "eb1": (0.5, 12),
    "eb2niw": (1.5, 15),
    "marriage": (8, 14),
    "eb5": (24, 48),
}

# Status visas: validity after approval and time to get approved (months)
STATUS_VISA_VALIDITY_MONTHS = {"tn": 36, "h1b": 36, "opt": 36, "f1": 48, "l1a": 36, "l1b": 36, "o1": 36}
STATUS_VISA_PROCESSING_MONTHS = {"tn": 0.5, "h1b": 3, "opt": 3, "f1": 2, "l1a": 3, "l1b": 3, "o1": 3}

# OPT length depends on STEM eligibility
STEM_OPT_MONTHS = (12, 36)
STANDARD_OPT_MONTHS = (12, 12)

# PERM timing model
PERM_MIN_MONTHS = 6
PERM_RANGE_SPREAD_MONTHS = 2
PWD_MIN_FACTOR = 0.8
RECRUITMENT_MONTHS = (2, 3)

# Priority date aging is only worth reporting past this many months
MIN_PD_AGING_MONTHS = 6


def calculate_category_demand_shares() -> Dict[EBCategory, float]:
    """
    Split employment-based demand across EB-1/2/3.

    EB-2 takes the professional share of the latest PERM quarter, EB-3 the
    skilled and other shares; EB-1 is a fixed share outside PERM.
    """
    total = PERM_LATEST_QUARTER["total"]
    shares = {
        EBCategory.EB1: EB1_DEMAND_SHARE,
        EBCategory.EB2: PERM_LATEST_QUARTER["professional"] / total,
        EBCategory.EB3: (PERM_LATEST_QUARTER["skilled"] + PERM_LATEST_QUARTER["other"]) / total,
    }
    logger.debug(f"Category demand shares: {shares}")
    return shares


def calculate_annual_category_limits() -> Dict[EBCategory, int]:
    """Statutory annual visas per EB category."""
    limits = {category: round(ANNUAL_EB_VISA_LIMIT * share)
              for category, share in EB_CATEGORY_STATUTORY_SHARES.items()}
    logger.debug(f"Annual category limits: {limits}")
    return limits


def calculate_per_country_limit(category: EBCategory) -> int:
    """Per-country cap within a category (7% rule)."""
    return round(calculate_annual_category_limits()[category] * PER_COUNTRY_CAP_SHARE)
