# src/greencard/utils.py
"""
Utility functions for green-card path forecasting.
Loading JSON inputs and exporting composed paths to CSV.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from .models import ComposedPath

logger = logging.getLogger(__name__)


def load_json(input_path: str) -> Dict[str, Any]:
    """
    Load a JSON document (profile, progress, case or data snapshot).

    Args:
        input_path: Path to the JSON file

    Returns:
        Parsed dictionary, or an empty dict when the file does not exist
    """
    input_file = Path(input_path)

    if not input_file.exists():
        logger.error(f"Input file not found: {input_file}")
        return {}

    with open(input_file, 'r') as f:
        data = json.load(f)

    logger.info(f"Loaded {input_file}")
    return data


def paths_to_dataframe(paths: List[ComposedPath]) -> pd.DataFrame:
    """Flatten paths into one row per stage."""
    rows: List[Dict[str, Any]] = []
    for path in paths:
        rows.extend(path.to_rows())
    columns = ['path_id', 'path_name', 'gc_category', 'order', 'stage_id', 'label', 'track', 'kind',
               'start_months', 'min_months', 'max_months', 'display', 'concurrent', 'resolved', 'note']
    return pd.DataFrame(rows, columns=columns)


def save_paths_csv(paths: List[ComposedPath], output_path: str) -> None:
    """
    Save composed paths to a CSV file, one row per stage.

    Args:
        paths: Composed paths
        output_path: Path to output CSV file
    """
    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    paths_to_dataframe(paths).to_csv(output_file, index=False)
    logger.info(f"Saved {len(paths)} paths to {output_file}")
