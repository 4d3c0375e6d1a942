# src/greencard/bulletin.py
"""
Visa bulletin snapshot: Final Action Dates and Dates for Filing charts,
keyed by EB category and chargeability country.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

import pandas as pd

from .dates import parse_cutoff, parse_iso_date
from .models import BulletinChart, Country, DataIntegrityError, EBCategory

logger = logging.getLogger(__name__)

_COUNTRY_ALIASES = {
    'allother': 'other',
    'all_other': 'other',
    'all other': 'other',
    'row': 'other',
    'rest_of_world': 'other',
}

CellTable = Dict[EBCategory, Dict[str, str]]


def _normalize_table(raw: Optional[Dict[str, Any]]) -> CellTable:
    table: CellTable = {}
    for category_key, countries in (raw or {}).items():
        try:
            category = EBCategory.parse(category_key)
        except DataIntegrityError:
            logger.warning(f"Skipping unknown bulletin category {category_key!r}")
            continue
        cells = {}
        for country_key, cell in (countries or {}).items():
            key = str(country_key).strip().lower()
            cells[_COUNTRY_ALIASES.get(key, key)] = str(cell)
        table[category] = cells
    return table


@dataclass(frozen=True)
class BulletinData:
    """Raw bulletin cells; parsing happens at lookup so unreadable cells degrade to "missing"."""
    published_date: Optional[date] = None
    final_action: CellTable = field(default_factory=dict)
    dates_for_filing: CellTable = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BulletinData':
        return cls(
            published_date=parse_iso_date(data.get('publishedDate', data.get('published_date'))),
            final_action=_normalize_table(data.get('finalActionDates', data.get('final_action'))),
            dates_for_filing=_normalize_table(data.get('datesForFiling', data.get('dates_for_filing'))),
        )

    def _table(self, chart: BulletinChart) -> CellTable:
        return self.final_action if chart == BulletinChart.FINAL_ACTION else self.dates_for_filing

    def cell(self, category: EBCategory, country: Country,
             chart: BulletinChart = BulletinChart.FINAL_ACTION) -> Optional[str]:
        """
        Raw cutoff cell for a category and country of chargeability.

        Countries without their own column use the residual "other" column.
        A missing Dates for Filing cell falls back to Final Action.
        """
        cells = self._table(chart).get(category, {})
        value = cells.get(country.value, cells.get('other'))
        if value is None and chart == BulletinChart.DATES_FOR_FILING:
            logger.debug(f"No filing chart cell for {category.value}/{country.value}; using final action")
            return self.cell(category, country, BulletinChart.FINAL_ACTION)
        return value

    def cutoff(self, category: EBCategory, country: Country,
               chart: BulletinChart = BulletinChart.FINAL_ACTION) -> Optional[date]:
        """Parsed cutoff (dates.CURRENT when current); None when missing or unreadable."""
        return parse_cutoff(self.cell(category, country, chart))

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for chart in BulletinChart:
            for category, cells in self._table(chart).items():
                for country, cell in cells.items():
                    rows.append({'chart': chart.value, 'category': category.value,
                                 'country': country, 'cutoff': cell})
        return pd.DataFrame(rows, columns=['chart', 'category', 'country', 'cutoff'])


DEFAULT_BULLETIN = BulletinData.from_dict({
    "publishedDate": "2025-01-01",
    "finalActionDates": {
        "EB-1": {"allOther": "Current", "china": "01FEB23", "india": "01FEB23"},
        "EB-2": {"allOther": "01APR24", "china": "01SEP21", "india": "01JUL13"},
        "EB-3": {"allOther": "01APR23", "china": "01MAY21", "india": "01NOV13"},
    },
})
