"""
Core module running the seasonal abundance pipeline for one species.
"""

import json
import logging
from dataclasses import asdict
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Union

import numpy as np
import xarray as xr
import geopandas as gpd
import pandas as pd
from shapely.geometry.base import BaseGeometry

from .bins import BinSpec, N_BINS, calculate_bins
from .classify import SeasonFlags, classify_seasons
from .composites import annual_composite, season_composites
from .errors import ConfigurationError, DomainMismatchError
from .palettes import render_config
from .ranges import CRUMB_FACTOR, SMOOTHNESS, RangePolygon, range_polygons, ranges_to_geodataframe
from .seasons import SeasonDefinition, assign_seasons, week_dates
from .utils import N_WEEKS, load_boundary, load_cube, load_regions, validate_cube
from .zonal import OCCUPANCY_THRESHOLD, WeekOccupancy, iter_week_occupancy, regional_stats

logger = logging.getLogger(__name__)

DEFAULT_PARAMS = {
    'n_bins': N_BINS,
    'smoothness': SMOOTHNESS,
    'crumb_factor': CRUMB_FACTOR,
    'occupancy_threshold': OCCUPANCY_THRESHOLD,
}


class SeasonalAbundance:
    """
    Seasonal composites, range boundaries and regional statistics for one
    species.

    Every stage is computed on first use and kept for the lifetime of the
    instance; the input cube is never modified.

    Parameters
    ----------
    cube : xr.DataArray, str or Path
        Weekly abundance cube with dims ('week', 'y', 'x') and 52 bands, or a
        path to a 52-band GeoTIFF.
    seasons : sequence of SeasonDefinition
        Season date ranges for the species.
    species_code : str, optional
        Species identifier used in log and error messages and output names.
    regions : GeoDataFrame, str or Path, optional
        Region polygons for zonal statistics.
    region_id_column : str, optional
        Identifier column of the regions. Default is 'region_id'.
    boundary : shapely geometry, str or Path, optional
        Analysis extent (e.g. land) for clipping range boundaries.
    aggregation_factor : int, optional
        Aggregation factor for range polygons and zonal statistics.
        Default is 1 (native resolution).
    params : dict, optional
        Overrides for 'n_bins', 'smoothness', 'crumb_factor' and
        'occupancy_threshold'.

    Examples
    --------
    >>> from pyabundance import SeasonalAbundance, load_season_definitions
    >>> seasons = load_season_definitions('runs.csv', 'woothr')
    >>> sa = SeasonalAbundance(
    ...     cube='woothr_abundance_weekly.tif',
    ...     seasons=seasons,
    ...     species_code='woothr',
    ...     regions='states.gpkg',
    ...     region_id_column='state_code',
    ...     boundary='land.gpkg',
    ...     aggregation_factor=3,
    ... )
    >>> sa.process(output_dir='./output', n_workers=4)
    """

    def __init__(
        self,
        cube: Union[xr.DataArray, str, Path],
        seasons: Sequence[SeasonDefinition],
        species_code: Optional[str] = None,
        regions: Optional[Union[gpd.GeoDataFrame, str, Path]] = None,
        region_id_column: str = 'region_id',
        boundary: Optional[Union[BaseGeometry, str, Path]] = None,
        aggregation_factor: int = 1,
        params: Optional[dict] = None,
    ):
        self.species_code = species_code or 'species'
        self.cube = cube if isinstance(cube, xr.DataArray) else load_cube(cube)
        validate_cube(self.cube, N_WEEKS)

        unknown = set(params or {}) - set(DEFAULT_PARAMS)
        if unknown:
            raise ValueError(f"Unknown parameters {sorted(unknown)}. Available: {list(DEFAULT_PARAMS)}")
        self.params = {**DEFAULT_PARAMS, **(params or {})}

        if aggregation_factor < 1:
            raise ValueError(f"aggregation_factor must be >= 1, got {aggregation_factor}")
        self.aggregation_factor = aggregation_factor

        crs = self.cube.rio.crs
        self.region_id_column = 'region_id'
        if regions is None or isinstance(regions, gpd.GeoDataFrame):
            self.regions = regions
            self.region_id_column = region_id_column
        else:
            self.regions = load_regions(regions, region_id_column, crs=crs)
        if boundary is None or isinstance(boundary, BaseGeometry):
            self.boundary = boundary
        else:
            self.boundary = load_boundary(boundary, crs=crs)

        self.seasons = list(seasons)
        self.dates: List[date] = week_dates(N_WEEKS)
        try:
            self.labels = assign_seasons(self.dates, self.seasons)
        except ConfigurationError as e:
            raise ConfigurationError(f"{self.species_code}: {e}") from e

        self._composites = None
        self._annual = None
        self._ranges = None

    @property
    def reviewed_seasons(self) -> List[str]:
        """Seasons whose definitions passed review."""
        return [s.name for s in self.seasons if s.passed_review]

    def composites(self, n_workers: Optional[int] = None) -> Dict[str, xr.DataArray]:
        """
        Season composites, keyed by season name.

        Parameters
        ----------
        n_workers : int, optional
            Number of dask workers. If None, seasons are composited
            sequentially.
        """
        if self._composites is None:
            logger.info(f"{self.species_code}: compositing seasons")
            self._composites = season_composites(
                self.cube, self.labels, expected=self.reviewed_seasons, n_workers=n_workers
            )
        return self._composites

    def annual(self) -> xr.DataArray:
        """Annual composite over all 52 weeks."""
        if self._annual is None:
            self._annual = annual_composite(self.cube)
        return self._annual

    def flags(self) -> SeasonFlags:
        """Migration split and year-round flags."""
        return classify_seasons(self.composites(), self.annual())

    def bins(self) -> BinSpec:
        """Bin breakpoints shared by all season composites."""
        return calculate_bins(list(self.composites().values()), n_bins=self.params['n_bins'])

    def ranges(self, n_workers: Optional[int] = None) -> List[RangePolygon]:
        """Range and prediction-area boundaries of every season."""
        if self._ranges is None:
            logger.info(f"{self.species_code}: polygonizing ranges")
            self._ranges = range_polygons(
                self.composites(n_workers),
                factor=self.aggregation_factor,
                boundary=self.boundary,
                smoothness=self.params['smoothness'],
                crumb_factor=self.params['crumb_factor'],
                n_workers=n_workers,
            )
        return self._ranges

    def regional_stats(self) -> pd.DataFrame:
        """
        Seasonal statistics per region.

        Raises
        ------
        ValueError
            If no regions were given.
        DomainMismatchError
            If the regions or composites do not match the cube grid.
        """
        if self.regions is None:
            raise ValueError("No regions were given")
        try:
            stats = regional_stats(
                self.cube,
                self.composites(),
                self.labels,
                self.regions,
                factor=self.aggregation_factor,
                threshold=self.params['occupancy_threshold'],
                id_column=self.region_id_column,
            )
        except DomainMismatchError as e:
            raise DomainMismatchError(f"{self.species_code}: {e}") from e
        stats.insert(0, 'species_code', self.species_code)
        return stats

    def weekly_occupancy(self, start_week: int = 1) -> Iterator[WeekOccupancy]:
        """Lazy weekly occupancy of the regions, resumable at ``start_week``."""
        if self.regions is None:
            raise ValueError("No regions were given")
        return iter_week_occupancy(
            self.cube,
            self.regions,
            self.labels,
            start_week=start_week,
            factor=self.aggregation_factor,
            threshold=self.params['occupancy_threshold'],
            id_column=self.region_id_column,
        )

    def _write_outputs(self, output_dir: Path) -> Dict[str, Path]:
        prefix = self.species_code
        paths = {}

        for season, composite in self.composites().items():
            path = output_dir / f"{prefix}_abundance_{season}.tif"
            composite.astype(np.float32).rio.to_raster(path)
            paths[season] = path
        annual_path = output_dir / f"{prefix}_abundance_annual.tif"
        self.annual().astype(np.float32).rio.to_raster(annual_path)
        paths['annual'] = annual_path

        ranges_path = output_dir / f"{prefix}_ranges.gpkg"
        ranges_to_geodataframe(self.ranges(), crs=self.cube.rio.crs).to_file(
            ranges_path, driver='GPKG'
        )
        paths['ranges'] = ranges_path

        flags = self.flags()
        bins = self.bins()
        config_path = output_dir / f"{prefix}_map_config.json"
        with open(config_path, 'w') as f:
            json.dump(
                {
                    'species_code': self.species_code,
                    'flags': asdict(flags),
                    'bins': {'breaks': list(bins.breaks), 'power': bins.power},
                    'render': render_config(flags, bins, self.composites().keys()),
                },
                f,
                indent=2,
            )
        paths['config'] = config_path

        if self.regions is not None:
            stats_path = output_dir / f"{prefix}_regional_stats.csv"
            self.regional_stats().to_csv(stats_path, index=False)
            paths['regional_stats'] = stats_path

        for name, path in paths.items():
            logger.info(f"Saved {name}: {path.name}")
        return paths

    def process(self, output_dir: Union[str, Path], n_workers: int = 4) -> Dict[str, Path]:
        """
        Run every stage and save the results.

        Season composites and range polygons are computed in parallel with
        dask.

        Parameters
        ----------
        output_dir : str or Path
            Directory to save outputs.
        n_workers : int, optional
            Number of parallel workers for dask. Default is 4.

        Returns
        -------
        dict
            Output name to path.
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Processing {self.species_code} with {n_workers} workers")
        self.composites(n_workers=n_workers)
        self.ranges(n_workers=n_workers)
        return self._write_outputs(output_dir)

    def process_sequential(self, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """
        Run every stage sequentially and save the results (useful for
        debugging).
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Processing {self.species_code} sequentially")
        return self._write_outputs(output_dir)
