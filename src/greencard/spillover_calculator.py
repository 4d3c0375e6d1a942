# src/greencard/spillover_calculator.py
"""
Spillover Allocation Calculator
Distributes visas left unused by other categories across the oversubscribed
countries of a category, in proportion to each country's share of demand.
"""

import logging
from typing import Dict

logger = logging.getLogger(__name__)


def calculate_spillover_allocations(
    available_visas: int,
    demand_by_country: Dict[str, float]
) -> Dict[str, int]:
    """
    Calculate spillover visa allocations for oversubscribed countries.

    Spillover rules:
    1. Visas are split proportionally to each country's demand
    2. Countries with no demand receive nothing
    3. The last country with demand receives the rounding remainder

    Args:
        available_visas: Spillover visas available to the category this year
        demand_by_country: Demand (absolute or share) for each oversubscribed country

    Returns:
        Dict mapping country -> additional visas allocated through spillover
    """
    allocations = {country: 0 for country in demand_by_country}

    if available_visas <= 0:
        return allocations

    total_demand = sum(demand_by_country.values())
    if total_demand <= 0:
        logger.debug("No demand for spillover distribution")
        return allocations

    countries = [c for c, demand in demand_by_country.items() if demand > 0]
    allocated = 0

    for i, country in enumerate(countries):
        demand = demand_by_country[country]

        # Last country takes the remainder (handles rounding)
        if i == len(countries) - 1:
            allocation = available_visas - allocated
        else:
            allocation = int(demand / total_demand * available_visas)

        allocations[country] = allocation
        allocated += allocation

        logger.debug(f"Spillover: {country} gets {allocation} visas "
                     f"(demand share={demand / total_demand:.2%})")

    return allocations
