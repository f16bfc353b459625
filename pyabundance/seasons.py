"""
Weekly band dates and season assignment.

Each of the 52 weekly bands of an abundance cube is anchored to the first
day of an ISO week of a fixed reference year. Season definitions map date
ranges (which may wrap across the year end) onto those bands.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Literal, Optional, Sequence, Union

import pandas as pd
import xarray as xr

from .errors import ConfigurationError
from .utils import N_WEEKS

logger = logging.getLogger(__name__)

# Type alias for season names
SeasonName = Literal[
    "nonbreeding",
    "prebreeding_migration",
    "breeding",
    "postbreeding_migration",
    "year_round",
]

# Canonical order; also the precedence when definitions overlap
SEASONS = (
    "nonbreeding",
    "prebreeding_migration",
    "breeding",
    "postbreeding_migration",
    "year_round",
)

REFERENCE_YEAR = 2022
WEEK_ORIGIN = date.fromisocalendar(REFERENCE_YEAR, 1, 1)


@dataclass(frozen=True)
class SeasonDefinition:
    """
    Date range of one season for one species.

    A definition without dates did not pass review and is skipped when
    assigning weeks.

    Parameters
    ----------
    name : str
        One of SEASONS.
    start_date : date, optional
        First day of the season.
    end_date : date, optional
        Last day of the season. May precede ``start_date`` in the calendar
        year, in which case the season wraps across the year end.
    """

    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def __post_init__(self):
        if self.name not in SEASONS:
            raise ConfigurationError(
                f"Unsupported season '{self.name}'. Available seasons: {list(SEASONS)}"
            )
        if (self.start_date is None) != (self.end_date is None):
            raise ConfigurationError(
                f"Season '{self.name}' must have both start and end dates or neither "
                f"(start={self.start_date}, end={self.end_date})"
            )

    @property
    def passed_review(self) -> bool:
        return self.start_date is not None

    def contains(self, d: date) -> bool:
        if not self.passed_review:
            return False
        return in_season(d, self.start_date, self.end_date)


def week_dates(n_weeks: int = N_WEEKS, origin: Optional[date] = None) -> List[date]:
    """
    Anchor dates of the weekly bands.

    Parameters
    ----------
    n_weeks : int, optional
        Number of bands. Default is 52.
    origin : date, optional
        Date of band 1. Default is the Monday of ISO week 1 of the
        reference year.

    Returns
    -------
    list of date
        Dates 7 days apart, starting at ``origin``.
    """
    origin = origin or WEEK_ORIGIN
    return [origin + timedelta(days=7 * i) for i in range(n_weeks)]


def week_date(index: int, n_weeks: int = N_WEEKS, origin: Optional[date] = None) -> date:
    """Date of a single 1-indexed band."""
    if not 1 <= index <= n_weeks:
        raise ValueError(f"Week index must be between 1 and {n_weeks}, got {index}")
    origin = origin or WEEK_ORIGIN
    return origin + timedelta(days=7 * (index - 1))


def in_season(d: date, start: date, end: date) -> bool:
    """
    Test whether a date falls within a season date range.

    Dates are compared by (month, day), so a range such as Dec 1 - Jan 31
    wraps across the year end.
    """
    key = (d.month, d.day)
    start_key = (start.month, start.day)
    end_key = (end.month, end.day)
    if start_key <= end_key:
        return start_key <= key <= end_key
    return key >= start_key or key <= end_key


def _check_unique(definitions: Sequence[SeasonDefinition]) -> None:
    seen = set()
    for definition in definitions:
        if definition.name in seen:
            raise ConfigurationError(f"Duplicate definition for season '{definition.name}'")
        seen.add(definition.name)


def assign_seasons(
    dates: Sequence[date],
    definitions: Sequence[SeasonDefinition]
) -> List[Optional[str]]:
    """
    Label each band date with its season.

    Parameters
    ----------
    dates : sequence of date
        Band dates.
    definitions : sequence of SeasonDefinition
        At most one definition per season.

    Returns
    -------
    list
        Season name per band, or None for unassigned bands.
    """
    _check_unique(definitions)
    by_name = {d.name: d for d in definitions}
    reviewed = [by_name[s] for s in SEASONS if s in by_name and by_name[s].passed_review]

    skipped = [d.name for d in definitions if not d.passed_review]
    if skipped:
        logger.info(f"Skipping seasons that did not pass review: {skipped}")

    labels = []
    for d in dates:
        label = None
        for definition in reviewed:
            if definition.contains(d):
                label = definition.name
                break
        labels.append(label)
    return labels


def season_weeks(labels: Sequence[Optional[str]]) -> Dict[str, List[int]]:
    """
    Group 1-indexed week numbers by season label.

    Unassigned weeks are left out.
    """
    weeks: Dict[str, List[int]] = {}
    for i, label in enumerate(labels, start=1):
        if label is not None:
            weeks.setdefault(label, []).append(i)
    return weeks


def filter_cube(cube: xr.DataArray, labels: Sequence[Optional[str]]) -> xr.DataArray:
    """
    Drop unassigned bands from a cube.

    The returned cube carries a ``season`` coordinate along ``week``, so
    bands, dates and labels stay in lockstep.
    """
    if len(labels) != cube.sizes['week']:
        raise ValueError(
            f"Got {len(labels)} labels for a cube with {cube.sizes['week']} weeks"
        )
    keep = [i for i, label in enumerate(labels) if label is not None]
    working = cube.isel(week=keep)
    working = working.assign_coords(season=('week', [labels[i] for i in keep]))
    logger.debug(f"Working cube keeps {len(keep)} of {len(labels)} weeks")
    return working


def _parse_date(value) -> Optional[date]:
    if value is None or pd.isna(value):
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return pd.Timestamp(value).date()


def definitions_from_record(record: dict, species_code: Optional[str] = None) -> List[SeasonDefinition]:
    """
    Build season definitions from one run-table row.

    The row holds ``<season>_start`` and ``<season>_end`` columns for every
    season; missing seasons or empty cells mean the season did not pass
    review.
    """
    definitions = []
    for season in SEASONS:
        start = _parse_date(record.get(f"{season}_start"))
        end = _parse_date(record.get(f"{season}_end"))
        try:
            definitions.append(SeasonDefinition(season, start, end))
        except ConfigurationError as e:
            if species_code is not None:
                raise ConfigurationError(f"{species_code}: {e}") from e
            raise
    return definitions


def load_season_definitions(
    source: Union[str, Path, pd.DataFrame],
    species_code: str,
    species_column: str = 'species_code',
) -> List[SeasonDefinition]:
    """
    Load season definitions for one species from a run table.

    Parameters
    ----------
    source : str, Path or DataFrame
        CSV file or DataFrame with one row per species.
    species_code : str
        Species to select.
    species_column : str, optional
        Column holding species codes. Default is 'species_code'.

    Returns
    -------
    list of SeasonDefinition
        One definition per season.

    Raises
    ------
    ConfigurationError
        If the species is missing, listed twice, or has malformed dates.
    """
    table = source if isinstance(source, pd.DataFrame) else pd.read_csv(source)
    if species_column not in table.columns:
        raise ConfigurationError(f"Run table has no '{species_column}' column")

    rows = table[table[species_column] == species_code]
    if len(rows) == 0:
        raise ConfigurationError(f"Species '{species_code}' not found in run table")
    if len(rows) > 1:
        raise ConfigurationError(f"Species '{species_code}' has {len(rows)} rows in run table")

    return definitions_from_record(rows.iloc[0].to_dict(), species_code)
