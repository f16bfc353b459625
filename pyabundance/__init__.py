"""
pyAbundance - Seasonal abundance maps, range boundaries and regional statistics
from weekly species abundance rasters.
"""

from .core import SeasonalAbundance
from .errors import (
    ConfigurationError,
    DomainMismatchError,
    EmptyInputWarning,
    DegenerateRatioWarning,
    GeometryDegeneracyWarning,
)
from .seasons import (
    SEASONS,
    SeasonDefinition,
    week_dates,
    week_date,
    in_season,
    assign_seasons,
    filter_cube,
    load_season_definitions,
)
from .composites import season_composites, annual_composite
from .classify import (
    SeasonFlags,
    classify_seasons,
    MIGRATION_SPLIT_THRESHOLD,
    YEARROUND_THRESHOLD,
)
from .bins import BinSpec, calculate_bins, N_BINS
from .ranges import RangePolygon, range_polygons, season_ranges, ranges_to_geodataframe
from .zonal import (
    Region,
    RegionStat,
    WeekOccupancy,
    OCCUPANCY_THRESHOLD,
    iter_week_occupancy,
    days_of_occupation,
    regional_stats,
    weekly_stats,
)
from .palettes import abundance_palette, render_config
from .utils import load_cube, load_regions, load_boundary, aggregate, reproject_cube

__version__ = "1.0.0"
__all__ = [
    # Core
    "SeasonalAbundance",
    # Errors
    "ConfigurationError",
    "DomainMismatchError",
    "EmptyInputWarning",
    "DegenerateRatioWarning",
    "GeometryDegeneracyWarning",
    # Seasons
    "SEASONS",
    "SeasonDefinition",
    "week_dates",
    "week_date",
    "in_season",
    "assign_seasons",
    "filter_cube",
    "load_season_definitions",
    # Composites
    "season_composites",
    "annual_composite",
    # Classifier
    "SeasonFlags",
    "classify_seasons",
    "MIGRATION_SPLIT_THRESHOLD",
    "YEARROUND_THRESHOLD",
    # Bins
    "BinSpec",
    "calculate_bins",
    "N_BINS",
    # Ranges
    "RangePolygon",
    "range_polygons",
    "season_ranges",
    "ranges_to_geodataframe",
    # Zonal statistics
    "Region",
    "RegionStat",
    "WeekOccupancy",
    "OCCUPANCY_THRESHOLD",
    "iter_week_occupancy",
    "days_of_occupation",
    "regional_stats",
    "weekly_stats",
    # Rendering
    "abundance_palette",
    "render_config",
    # Utils
    "load_cube",
    "load_regions",
    "load_boundary",
    "aggregate",
    "reproject_cube",
]
