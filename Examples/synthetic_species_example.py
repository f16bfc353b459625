"""
pyAbundance Synthetic Species Example
=====================================

This script demonstrates the full seasonal abundance workflow on a
synthetic migratory species, so it runs without downloading any data.

The workflow includes:
1. Simulate a 52-week abundance cube (GeoTIFF) for a species that winters
   in the south, breeds in the north and migrates along different routes
   in spring and autumn
2. Write a run table with reviewed season dates and a set of regions
3. Season composites, season flags, bins and range boundaries
4. Regional statistics, including days of occupation
5. Visualization of the seasonal maps and of weekly regional occupancy

Usage:
    python synthetic_species_example.py
    python synthetic_species_example.py -w 8           # 8 parallel workers
    python synthetic_species_example.py --sequential   # no dask
    python synthetic_species_example.py --aggregate 2  # coarser ranges and stats
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import geopandas as gpd
import xarray as xr
import rioxarray  # noqa: F401
from shapely.geometry import box

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import pyAbundance modules
from pyabundance import (
    SeasonalAbundance,
    load_season_definitions,
    week_dates,
)
from pyabundance.palettes import NO_PREDICTION_COLOR, ZERO_COLOR


# =============================================================================
# Configuration
# =============================================================================

SPECIES_CODE = 'synthr'
CRS = 'EPSG:3857'

# Grid: 80 rows x 60 columns of 10 km cells
N_ROWS, N_COLS = 80, 60
RESOLUTION = 10_000.0

# Reviewed season dates (year is ignored, only month and day are used)
RUN_TABLE = {
    'species_code': [SPECIES_CODE],
    'breeding_start': ['2022-06-01'],
    'breeding_end': ['2022-07-31'],
    'nonbreeding_start': ['2022-11-15'],
    'nonbreeding_end': ['2022-03-01'],
    'prebreeding_migration_start': ['2022-03-08'],
    'prebreeding_migration_end': ['2022-05-24'],
    'postbreeding_migration_start': ['2022-08-08'],
    'postbreeding_migration_end': ['2022-11-08'],
    'year_round_start': [None],
    'year_round_end': [None],
}

# Region grid: 2 columns x 4 rows of rectangular "states"
REGION_COLS, REGION_ROWS = 2, 4

# Output directories
BASE_DIR = Path('./synthetic_species')
INPUT_DIR = BASE_DIR / 'inputs'
OUTPUT_DIR = BASE_DIR / 'outputs'
FIGURE_DIR = BASE_DIR / 'figures'


# =============================================================================
# Synthetic inputs
# =============================================================================

def create_output_directories():
    """Create output directory structure."""
    for directory in (INPUT_DIR, OUTPUT_DIR, FIGURE_DIR):
        directory.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created directory: {directory}")


def simulate_cube(seed: int = 0) -> xr.DataArray:
    """
    Simulate weekly abundance of a migratory species.

    The population centre moves north in spring along the western half of
    the grid and back south in autumn along the eastern half. The far
    south-east corner has no predictions (e.g. open water).
    """
    rng = np.random.default_rng(seed)
    ys = (N_ROWS - np.arange(N_ROWS) - 0.5) * RESOLUTION
    xs = (np.arange(N_COLS) + 0.5) * RESOLUTION
    yy, xx = np.meshgrid(ys, xs, indexing='ij')

    south, north = 0.15 * N_ROWS * RESOLUTION, 0.85 * N_ROWS * RESOLUTION
    west, east = 0.3 * N_COLS * RESOLUTION, 0.7 * N_COLS * RESOLUTION
    centre_x = 0.5 * N_COLS * RESOLUTION

    bands = []
    for week, d in enumerate(week_dates(), start=1):
        doy = d.timetuple().tm_yday
        # latitude of the population centre over the year
        phase = np.clip((np.cos(2 * np.pi * (doy - 196) / 365) + 1) / 2, 0, 1)
        cy = south + (north - south) * phase
        if 60 < doy < 160:
            cx = west
        elif 210 < doy < 320:
            cx = east
        else:
            cx = centre_x
        spread = 8 * RESOLUTION
        density = 5.0 * np.exp(-((xx - cx) ** 2 + (yy - cy) ** 2) / (2 * spread ** 2))
        density *= rng.lognormal(0.0, 0.3, size=density.shape)
        density[density < 0.05] = 0.0
        bands.append(density)

    values = np.stack(bands).astype(np.float32)
    values[:, -10:, -10:] = np.nan

    cube = xr.DataArray(
        values,
        dims=['band', 'y', 'x'],
        coords={'band': np.arange(1, 53), 'y': ys, 'x': xs},
        name='abundance',
    )
    return cube.rio.write_crs(CRS).rio.write_nodata(np.nan)


def create_regions() -> gpd.GeoDataFrame:
    """Split the grid into a regular set of rectangular regions."""
    width = N_COLS * RESOLUTION / REGION_COLS
    height = N_ROWS * RESOLUTION / REGION_ROWS
    records, geometries = [], []
    for i in range(REGION_ROWS):
        for j in range(REGION_COLS):
            records.append({'state_code': f"R{i}{j}"})
            geometries.append(box(j * width, i * height, (j + 1) * width, (i + 1) * height))
    return gpd.GeoDataFrame(records, geometry=geometries, crs=CRS)


def write_inputs():
    """Write the cube, run table, regions and boundary to INPUT_DIR."""
    cube_path = INPUT_DIR / f'{SPECIES_CODE}_abundance_weekly.tif'
    simulate_cube().rio.to_raster(cube_path)
    logger.info(f"Saved abundance cube: {cube_path}")

    runs_path = INPUT_DIR / 'runs.csv'
    pd.DataFrame(RUN_TABLE).to_csv(runs_path, index=False)
    logger.info(f"Saved run table: {runs_path}")

    regions_path = INPUT_DIR / 'regions.geojson'
    create_regions().to_file(regions_path, driver='GeoJSON')
    logger.info(f"Saved regions: {regions_path}")

    # Land boundary: everything except the no-prediction corner
    land = box(0, 0, N_COLS * RESOLUTION, N_ROWS * RESOLUTION).difference(
        box((N_COLS - 10) * RESOLUTION, 0, N_COLS * RESOLUTION, 10 * RESOLUTION)
    )
    boundary_path = INPUT_DIR / 'land.geojson'
    gpd.GeoDataFrame(geometry=[land], crs=CRS).to_file(boundary_path, driver='GeoJSON')
    logger.info(f"Saved boundary: {boundary_path}")

    return cube_path, runs_path, regions_path, boundary_path


# =============================================================================
# Visualization
# =============================================================================

def plot_season_maps(sa: SeasonalAbundance):
    """
    Plot every season composite with the shared bins and season palettes,
    overlaid with its range boundary.
    """
    import matplotlib.pyplot as plt
    from matplotlib.colors import ListedColormap, BoundaryNorm
    from pyabundance.palettes import render_config

    composites = sa.composites()
    bins = sa.bins()
    config = render_config(sa.flags(), bins, composites.keys())
    ranges = {r.season: r for r in sa.ranges() if r.layer == 'range'}

    fig, axes = plt.subplots(1, len(composites), figsize=(5 * len(composites), 6))
    axes = np.atleast_1d(axes)

    for ax, (season, composite) in zip(axes, composites.items()):
        season_config = config['seasons'][season]
        classes = bins.digitize(composite.values)
        colors = [NO_PREDICTION_COLOR, ZERO_COLOR] + season_config['colors']
        cmap = ListedColormap(colors)
        norm = BoundaryNorm(np.arange(-1.5, len(colors) - 1), cmap.N)

        extent = [0, N_COLS * RESOLUTION, 0, N_ROWS * RESOLUTION]
        ax.imshow(classes, cmap=cmap, norm=norm, extent=extent, interpolation='nearest')

        boundary = ranges[season].geometry
        for part in boundary.geoms:
            x, y = part.exterior.xy
            ax.plot(x, y, color='black', linewidth=0.8)

        ax.set_title(season_config['label'].title(), fontsize=14, fontweight='bold')
        ax.set_xticks([])
        ax.set_yticks([])

    plt.suptitle(f'{SPECIES_CODE} - Seasonal Relative Abundance', fontsize=16, fontweight='bold')
    plt.tight_layout()
    output_path = FIGURE_DIR / f'{SPECIES_CODE}_season_maps.png'
    plt.savefig(output_path, dpi=200, bbox_inches='tight')
    plt.close()
    logger.info(f"Saved season maps: {output_path}")


def plot_weekly_occupancy(sa: SeasonalAbundance):
    """Plot the weekly occupied fraction of every region."""
    import matplotlib.pyplot as plt

    records = list(sa.weekly_occupancy())
    dates = [r.date for r in records]
    fractions = np.stack([r.fraction for r in records])

    fig, ax = plt.subplots(figsize=(12, 6))
    for i, region_id in enumerate(records[0].region_ids):
        ax.plot(dates, fractions[:, i], label=str(region_id), linewidth=1.5)
    ax.axhline(sa.params['occupancy_threshold'], color='gray', linestyle='--',
               label='Occupancy threshold')

    ax.set_xlabel('Week', fontsize=14)
    ax.set_ylabel('Fraction of region occupied', fontsize=14)
    ax.set_title(f'{SPECIES_CODE} - Weekly Regional Occupancy', fontsize=16, fontweight='bold')
    ax.legend(ncol=4, fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    output_path = FIGURE_DIR / f'{SPECIES_CODE}_weekly_occupancy.png'
    plt.savefig(output_path, dpi=200, bbox_inches='tight')
    plt.close()
    logger.info(f"Saved weekly occupancy plot: {output_path}")


# =============================================================================
# Workflow
# =============================================================================

def run_full_workflow(n_workers: int = 4, sequential: bool = False, aggregate: int = 1):
    """
    Run the complete workflow.

    Parameters
    ----------
    n_workers : int
        Number of parallel workers.
    sequential : bool
        Process sequentially instead of with dask.
    aggregate : int
        Aggregation factor for range polygons and regional statistics.
    """
    logger.info("=" * 60)
    logger.info("pyAbundance Synthetic Species Workflow")
    logger.info("=" * 60)

    create_output_directories()
    cube_path, runs_path, regions_path, boundary_path = write_inputs()

    sa = SeasonalAbundance(
        cube=cube_path,
        seasons=load_season_definitions(runs_path, SPECIES_CODE),
        species_code=SPECIES_CODE,
        regions=regions_path,
        region_id_column='state_code',
        boundary=boundary_path,
        aggregation_factor=aggregate,
    )

    if sequential:
        outputs = sa.process_sequential(OUTPUT_DIR)
    else:
        outputs = sa.process(OUTPUT_DIR, n_workers=n_workers)

    flags = sa.flags()
    logger.info(f"Split migration: {flags.split_migration} (ratio {flags.migration_ratio})")
    logger.info(f"Show year-round: {flags.show_yearround} (ratio {flags.yearround_ratio})")

    stats = sa.regional_stats()
    days = stats[stats['statistic'] == 'days_occupation'].pivot(
        index='region_id', columns='season', values='value'
    )
    logger.info(f"Days of occupation:\n{days}")

    plot_season_maps(sa)
    plot_weekly_occupancy(sa)

    logger.info("=" * 60)
    logger.info("Workflow complete!")
    logger.info("=" * 60)
    for name, path in outputs.items():
        logger.info(f"  - {name}: {path}")


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(
        description='pyAbundance Synthetic Species Example',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '--workers', '-w',
        type=int,
        default=4,
        help='Number of parallel workers (default: 4)'
    )
    parser.add_argument(
        '--sequential',
        action='store_true',
        help='Process sequentially instead of in parallel'
    )
    parser.add_argument(
        '--aggregate', '-a',
        type=int,
        default=1,
        help='Aggregation factor for ranges and regional statistics (default: 1)'
    )

    args = parser.parse_args()

    run_full_workflow(n_workers=args.workers, sequential=args.sequential, aggregate=args.aggregate)
