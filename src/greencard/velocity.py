# src/greencard/velocity.py
"""
Velocity/wait model for priority-date queues.

Demand per category and country is estimated from PERM certifications,
the dependents multiplier and country shares; supply from statutory limits,
the 7% per-country cap and typical spillover. The bulletin's historical
advancement rate turns "months behind the cutoff" into a projected wait.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .dates import is_current, months_between, parse_cutoff, parse_month_year
from .empirical_params import (
    AVG_DEPENDENTS_MULTIPLIER, BECAME_CURRENT_ADVANCEMENT, CAPPED_CONFIDENCE,
    COUNTRY_CONFIDENCE, COUNTRY_DEMAND_DISTRIBUTION, CURRENT_TO_CURRENT_ADVANCEMENT,
    DEFAULT_ADVANCEMENT_MONTHS_PER_YEAR, HISTORICAL_BULLETIN_DATA,
    MAX_ADVANCEMENT_MONTHS_PER_YEAR, MAX_WAIT_MONTHS, MIN_ADVANCEMENT_MONTHS_PER_YEAR,
    PER_COUNTRY_CAP_SHARE, PERM_ANNUAL_CERTIFICATIONS, QUEUE_CATEGORIES, TYPICAL_SPILLOVER,
    UNPARSEABLE_CUTOFF_CONFIDENCE, calculate_annual_category_limits, calculate_category_demand_shares,
    calculate_per_country_limit
)
from .models import Country, DataIntegrityError, EBCategory, VelocityResult
from .spillover_calculator import calculate_spillover_allocations

logger = logging.getLogger(__name__)

CAPPED_COUNTRIES = ("india", "china")
COUNTRY_KEYS = ("india", "china", "other")


def country_key(country: Union[Country, str]) -> str:
    """India and China have their own queues; everyone else shares the residual one."""
    country = Country.parse(country)
    return country.value if country.value in CAPPED_COUNTRIES else "other"


def calculate_historical_advancement(history: List[Tuple[str, str]]) -> Optional[float]:
    """
    Conservative bulletin advancement rate (months of cutoff movement per year).

    Blends 60% of the slowest year with 40% of the 25th percentile. Retrogressions
    are skipped; "Current" to "Current" counts as 12 and a date becoming current as 24.
    Returns None when the history has no usable year-over-year movement.
    """
    if len(history) < 2:
        return None

    rates = []
    for (_, previous), (_, current) in zip(history, history[1:]):
        prev_date = None if previous.strip().lower() == "current" else parse_month_year(previous)
        curr_date = None if current.strip().lower() == "current" else parse_month_year(current)

        if prev_date is None and curr_date is None:
            rates.append(CURRENT_TO_CURRENT_ADVANCEMENT)
        elif prev_date is None:
            continue  # retrogressed from current
        elif curr_date is None:
            rates.append(BECAME_CURRENT_ADVANCEMENT)
        else:
            advancement = (curr_date.year - prev_date.year) * 12 + (curr_date.month - prev_date.month)
            if advancement > 0:
                rates.append(float(advancement))

    if not rates:
        return None

    ordered = np.sort(np.array(rates))
    slowest = ordered[0]
    percentile_25 = ordered[int(len(ordered) * 0.25)]
    blended = 0.6 * slowest + 0.4 * percentile_25
    return float(np.clip(blended, MIN_ADVANCEMENT_MONTHS_PER_YEAR, MAX_ADVANCEMENT_MONTHS_PER_YEAR))


class VelocityModel:
    """
    Demand/supply velocity model for EB-1, EB-2 and EB-3 queues.

    Advancement rates are computed once at construction; the model is
    read-only afterwards and safe to share between callers.
    """

    def __init__(
        self,
        dependents_multiplier: float = AVG_DEPENDENTS_MULTIPLIER,
        country_distribution: Optional[Dict[str, float]] = None,
        annual_certifications: int = PERM_ANNUAL_CERTIFICATIONS,
        historical_bulletins: Optional[Dict[EBCategory, Dict[str, List[Tuple[str, str]]]]] = None
    ):
        """
        Initialize velocity model.

        Args:
            dependents_multiplier: Visas consumed per approved principal
            country_distribution: Demand share per country key (india/china/other)
            annual_certifications: Annualized PERM certifications
            historical_bulletins: January Final Action history per category and country
        """
        self.dependents_multiplier = dependents_multiplier
        self.country_distribution = dict(country_distribution or COUNTRY_DEMAND_DISTRIBUTION)
        self.annual_certifications = annual_certifications
        self.historical_bulletins = historical_bulletins if historical_bulletins is not None else HISTORICAL_BULLETIN_DATA

        self.category_shares = calculate_category_demand_shares()
        self.category_limits = calculate_annual_category_limits()
        self.advancement_rates = self._calculate_advancement_rates()

        logger.info(f"VelocityModel initialized: dependents={dependents_multiplier}, "
                    f"countries={self.country_distribution}")

    def _require_category(self, category: Union[EBCategory, str]) -> EBCategory:
        category = EBCategory.parse(category)
        if category not in QUEUE_CATEGORIES:
            raise DataIntegrityError(f"Velocity model has no queue data for {category.value}")
        return category

    def _calculate_advancement_rates(self) -> Dict[EBCategory, Dict[str, float]]:
        rates = {}
        for category in QUEUE_CATEGORIES:
            rates[category] = {}
            for key in COUNTRY_KEYS:
                history = self.historical_bulletins.get(category, {}).get(key, [])
                historical = calculate_historical_advancement(history)
                if historical is None:
                    historical = self._demand_based_advancement(category, key)
                    logger.debug(f"{category.value}/{key}: no usable history, demand-based rate {historical:.1f}")
                rates[category][key] = historical
        logger.debug(f"Advancement rates: {rates}")
        return rates

    def _demand_based_advancement(self, category: EBCategory, key: str) -> float:
        ratio = self.demand_ratio(category, key)
        if ratio <= 0:
            return DEFAULT_ADVANCEMENT_MONTHS_PER_YEAR
        return float(np.clip(12 / ratio, MIN_ADVANCEMENT_MONTHS_PER_YEAR, MAX_ADVANCEMENT_MONTHS_PER_YEAR))

    def visa_allocation(self, category: Union[EBCategory, str]) -> int:
        """Statutory annual visas for the category."""
        return self.category_limits[self._require_category(category)]

    def effective_availability(self, category: Union[EBCategory, str], country: Union[Country, str]) -> float:
        """
        Visas a country can realistically receive per year in a category.

        India and China get the per-country cap plus their demand-weighted share of
        typical spillover; everyone else shares what remains of the category limit.
        """
        category = self._require_category(category)
        key = country_key(country)
        limit = self.category_limits[category]
        per_country = calculate_per_country_limit(category)

        if key == "other":
            return float(limit - per_country * len(CAPPED_COUNTRIES))

        spillover = calculate_spillover_allocations(
            TYPICAL_SPILLOVER.get(category, 0),
            {c: self.country_distribution.get(c, 0.0) for c in CAPPED_COUNTRIES}
        )
        return float(per_country + spillover[key])

    def estimate_annual_demand(self, category: Union[EBCategory, str], country: Union[Country, str]) -> float:
        """Visas demanded per year: certifications x dependents x country share x category share."""
        category = self._require_category(category)
        key = country_key(country)
        return (self.annual_certifications * self.dependents_multiplier
                * self.country_distribution.get(key, 0.0) * self.category_shares[category])

    def demand_ratio(self, category: Union[EBCategory, str], country: Union[Country, str]) -> float:
        availability = self.effective_availability(category, country)
        if availability <= 0:
            return float('inf')
        return self.estimate_annual_demand(category, country) / availability

    def absorption_rate(self, category: Union[EBCategory, str], country: Union[Country, str]) -> float:
        """Share of a year's demand that the year's supply absorbs."""
        demand = self.estimate_annual_demand(category, country)
        if demand <= 0:
            return 1.0
        return self.effective_availability(category, country) / demand

    def advancement_rate(self, category: Union[EBCategory, str], country: Union[Country, str]) -> float:
        return self.advancement_rates[self._require_category(category)][country_key(country)]

    def assumptions(self) -> Dict[str, Any]:
        """Every input the estimates depend on, for display alongside results."""
        return {
            'dependents_multiplier': self.dependents_multiplier,
            'country_distribution': dict(self.country_distribution),
            'annual_certifications': self.annual_certifications,
            'category_demand_shares': {c.value: s for c, s in self.category_shares.items()},
            'category_limits': {c.value: self.category_limits[c] for c in QUEUE_CATEGORIES},
            'per_country_cap_share': PER_COUNTRY_CAP_SHARE,
            'typical_spillover': {c.value: v for c, v in TYPICAL_SPILLOVER.items()},
            'advancement_months_per_year': {
                c.value: dict(rates) for c, rates in self.advancement_rates.items()
            },
            'max_wait_months': MAX_WAIT_MONTHS,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Demand, supply and advancement per category and country."""
        rows = []
        for category in QUEUE_CATEGORIES:
            for key in COUNTRY_KEYS:
                rows.append({
                    'category': category.value,
                    'country': key,
                    'annual_demand': round(self.estimate_annual_demand(category, key)),
                    'availability': round(self.effective_availability(category, key)),
                    'demand_ratio': round(self.demand_ratio(category, key), 2),
                    'advancement_months_per_year': round(self.advancement_rate(category, key), 1),
                })
        return pd.DataFrame(rows)

    def estimate_wait(
        self,
        priority_date: date,
        bulletin_cutoff: Union[str, date, None],
        country: Union[Country, str],
        category: Union[EBCategory, str]
    ) -> VelocityResult:
        """
        Estimate remaining queue wait for a priority date.

        Args:
            priority_date: Priority date of the case
            bulletin_cutoff: Bulletin cell ("01JUL13", "Jul 2013", ISO, "Current") or parsed date
            country: Country of chargeability; unknown countries use the residual share
            category: EB-1, EB-2 or EB-3

        Returns:
            VelocityResult with non-negative estimate and range

        Raises:
            DataIntegrityError: if the category has no queue model
        """
        category = self._require_category(category)
        key = country_key(country)
        cutoff = parse_cutoff(bulletin_cutoff)

        if cutoff is None:
            logger.warning(f"Cannot read cutoff {bulletin_cutoff!r} for {category.value}/{key}; assuming no wait")
            return VelocityResult(
                0.0, 0.0, 0.0, UNPARSEABLE_CUTOFF_CONFIDENCE,
                "Bulletin cutoff unavailable; wait could not be estimated."
            )
        if is_current(cutoff):
            return VelocityResult.current("Category is current - no wait required.")
        if priority_date <= cutoff:
            return VelocityResult.current("Your priority date is current - you can file I-485 now.")

        months_behind = months_between(cutoff, priority_date)
        advancement = self.advancement_rate(category, key)
        velocity_ratio = 12 / advancement
        estimated = round(months_behind * velocity_ratio, 1)

        capped = estimated > MAX_WAIT_MONTHS
        if capped:
            estimated = float(MAX_WAIT_MONTHS)

        confidence = CAPPED_CONFIDENCE if capped else COUNTRY_CONFIDENCE[key]
        uncertainty = (1 - COUNTRY_CONFIDENCE[key]) * 0.5
        range_min = max(0.0, round(estimated * (1 - uncertainty), 1))
        range_max = min(round(estimated * (1 + uncertainty), 1), float(MAX_WAIT_MONTHS))

        years_behind = round(months_behind / 12)
        years = round(estimated / 12)
        if estimated <= 6:
            explanation = f"Short wait expected. Bulletin advances ~{advancement:.1f} months/year."
        elif estimated <= 24:
            explanation = (f"Moderate backlog: ~{months_behind:.0f} months behind cutoff. "
                           f"Bulletin advances ~{advancement:.1f} mo/yr.")
        elif estimated <= 120:
            explanation = (f"Significant backlog: ~{years_behind} years behind. At ~{advancement:.1f} mo/yr "
                           f"advancement, expect ~{years} year wait.")
        elif capped:
            explanation = (f"Extreme backlog: {years_behind}+ years behind cutoff. Wait time is effectively "
                           f"indefinite (50+ years). Consider alternative paths.")
        else:
            explanation = (f"Severe backlog: ~{years_behind} years behind. Bulletin advances "
                           f"~{advancement:.1f} mo/yr. ~{years}+ year wait.")

        logger.debug(f"Wait {category.value}/{key}: {months_behind:.1f} months behind, "
                     f"advancement {advancement:.1f}, estimate {estimated} months")

        return VelocityResult(
            estimated_months=estimated,
            range_min=range_min,
            range_max=range_max,
            confidence=confidence,
            explanation=explanation,
            advancement_months_per_year=advancement,
            velocity_ratio=velocity_ratio,
            demand_ratio=self.demand_ratio(category, key),
            months_behind=months_behind,
        )
