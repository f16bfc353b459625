"""
Utility functions for loading grids and boundaries and handling grid geometry.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import xarray as xr
import rioxarray  # noqa: F401 (registers the .rio accessor)
import geopandas as gpd
from rasterio.enums import Resampling
from rasterio.transform import Affine
from shapely.ops import unary_union

from .errors import DomainMismatchError

logger = logging.getLogger(__name__)

# Number of weekly bands in every abundance cube
N_WEEKS = 52


def to_dataarray(
    values: np.ndarray,
    transform: Affine,
    crs=None,
    name: Optional[str] = None,
    attrs: Optional[dict] = None,
) -> xr.DataArray:
    """
    Wrap a 2D array into a georeferenced DataArray.

    Coordinates are cell centres derived from the affine transform.

    Parameters
    ----------
    values : np.ndarray
        2D array of shape (rows, cols).
    transform : Affine
        Affine transform of the grid (north-up).
    crs : optional
        Coordinate reference system understood by rioxarray.
    name : str, optional
        Name of the DataArray.
    attrs : dict, optional
        Attributes to attach.

    Returns
    -------
    xr.DataArray
        DataArray with dims ('y', 'x').
    """
    n_rows, n_cols = values.shape
    xs = transform.c + (np.arange(n_cols) + 0.5) * transform.a
    ys = transform.f + (np.arange(n_rows) + 0.5) * transform.e
    da = xr.DataArray(
        values,
        dims=['y', 'x'],
        coords={'y': ys, 'x': xs},
        name=name,
        attrs=attrs or {},
    )
    if crs is not None:
        da = da.rio.write_crs(crs)
    return da


def grid_transform(grid: xr.DataArray) -> Affine:
    """Affine transform of a DataArray, recomputed from its coordinates."""
    return grid.rio.transform(recalc=True)


def cell_size(transform: Affine) -> Tuple[float, float]:
    """Absolute cell width and height of a grid transform."""
    return abs(transform.a), abs(transform.e)


def aggregate_array(
    values: np.ndarray,
    transform: Affine,
    factor: int
) -> Tuple[np.ndarray, Affine]:
    """
    Aggregate a 2D array to a coarser grid by averaging non-missing cells.

    Edges that do not fill a whole block are padded with NaN, so no cell of
    the input is dropped. A block whose cells are all missing stays missing.

    Parameters
    ----------
    values : np.ndarray
        2D array.
    transform : Affine
        Affine transform of the input grid.
    factor : int
        Number of input cells per output cell along each axis.

    Returns
    -------
    tuple
        Tuple of (aggregated array, aggregated transform).
    """
    if factor < 1:
        raise ValueError(f"Aggregation factor must be >= 1, got {factor}")
    if factor == 1:
        return values, transform

    n_rows, n_cols = values.shape
    pad_rows = (-n_rows) % factor
    pad_cols = (-n_cols) % factor
    padded = np.pad(
        values.astype(np.float64),
        ((0, pad_rows), (0, pad_cols)),
        constant_values=np.nan
    )
    out_rows = padded.shape[0] // factor
    out_cols = padded.shape[1] // factor
    blocks = padded.reshape(out_rows, factor, out_cols, factor)

    valid = ~np.isnan(blocks)
    total = np.where(valid, blocks, 0.0).sum(axis=(1, 3))
    count = valid.sum(axis=(1, 3))
    with np.errstate(divide='ignore', invalid='ignore'):
        agg = np.where(count > 0, total / count, np.nan)

    return agg, transform @ Affine.scale(factor)


def aggregate(grid: xr.DataArray, factor: int) -> xr.DataArray:
    """
    Aggregate a 2D DataArray to a coarser grid (mean of non-missing cells).

    Parameters
    ----------
    grid : xr.DataArray
        2D grid with dims ('y', 'x').
    factor : int
        Aggregation factor.

    Returns
    -------
    xr.DataArray
        Aggregated grid carrying the same CRS and attributes.
    """
    if factor == 1:
        return grid
    values, transform = aggregate_array(grid.values, grid_transform(grid), factor)
    return to_dataarray(
        values, transform, crs=grid.rio.crs, name=grid.name, attrs=dict(grid.attrs)
    )


def validate_cube(cube: xr.DataArray, n_weeks: int = N_WEEKS) -> None:
    """
    Check that a cube has the expected dims and band count.

    Raises
    ------
    DomainMismatchError
        If the cube is not (week, y, x) or does not have ``n_weeks`` bands.
    """
    if cube.dims != ('week', 'y', 'x'):
        raise DomainMismatchError(
            f"Abundance cube must have dims ('week', 'y', 'x'), got {cube.dims}"
        )
    if cube.sizes['week'] != n_weeks:
        raise DomainMismatchError(
            f"Abundance cube must have {n_weeks} weekly bands, got {cube.sizes['week']}"
        )


def check_same_grid(*grids: xr.DataArray) -> None:
    """
    Check that 2D grids share shape and georeferencing.

    Raises
    ------
    DomainMismatchError
        If shapes or transforms differ.
    """
    if not grids:
        return
    ref = grids[0]
    ref_shape = ref.shape[-2:]
    ref_transform = grid_transform(ref)
    for grid in grids[1:]:
        if grid.shape[-2:] != ref_shape:
            raise DomainMismatchError(
                f"Grid shape {grid.shape[-2:]} does not match {ref_shape}"
            )
        if not grid_transform(grid).almost_equals(ref_transform):
            raise DomainMismatchError("Grids do not share the same transform")


def load_cube(
    path: Union[str, Path],
    chunks: Optional[Union[bool, dict]] = None,
    n_weeks: int = N_WEEKS,
) -> xr.DataArray:
    """
    Load a multi-band weekly abundance raster as a (week, y, x) cube.

    Parameters
    ----------
    path : str or Path
        Path to a multi-band GeoTIFF with one band per week.
    chunks : bool or dict, optional
        Passed to ``rioxarray.open_rasterio``. Use ``{'band': 1}`` to keep
        the cube lazy and load one week at a time.
    n_weeks : int, optional
        Expected band count. Default is 52.

    Returns
    -------
    xr.DataArray
        Abundance cube with nodata converted to NaN.
    """
    from .seasons import week_dates

    logger.info(f"Loading abundance cube: {path}")
    da = rioxarray.open_rasterio(path, masked=True, chunks=chunks)
    da = da.rename({'band': 'week'})
    da = da.assign_coords(
        week=np.arange(1, da.sizes['week'] + 1),
    )
    validate_cube(da, n_weeks)
    da = da.assign_coords(date=('week', np.array(week_dates(n_weeks), dtype='datetime64[D]')))
    return da


def reproject_cube(
    cube: xr.DataArray,
    dst_crs,
    resampling: Resampling = Resampling.nearest,
    resolution: Optional[float] = None,
) -> xr.DataArray:
    """
    Reproject a cube or 2D grid to another CRS.

    Parameters
    ----------
    cube : xr.DataArray
        Grid to reproject.
    dst_crs
        Target CRS.
    resampling : Resampling, optional
        Resampling rule. Default is nearest.
    resolution : float, optional
        Target resolution in target CRS units.

    Returns
    -------
    xr.DataArray
        Reprojected grid with nodata as NaN.
    """
    kwargs = {'resampling': resampling, 'nodata': np.nan}
    if resolution is not None:
        kwargs['resolution'] = resolution
    return cube.rio.reproject(dst_crs, **kwargs)


def load_regions(
    path: Union[str, Path, gpd.GeoDataFrame],
    id_column: str,
    crs=None,
) -> gpd.GeoDataFrame:
    """
    Load region polygons with a stable identifier column.

    Parameters
    ----------
    path : str, Path or GeoDataFrame
        Vector file readable by geopandas, or an existing GeoDataFrame.
    id_column : str
        Column holding the region identifier.
    crs : optional
        If given, regions are transformed to this CRS.

    Returns
    -------
    gpd.GeoDataFrame
        Regions with columns ``region_id`` and ``geometry``.
    """
    gdf = path if isinstance(path, gpd.GeoDataFrame) else gpd.read_file(path)
    if id_column not in gdf.columns:
        raise ValueError(f"Region id column '{id_column}' not found in {list(gdf.columns)}")
    if crs is not None and gdf.crs is not None:
        gdf = gdf.to_crs(crs)
    gdf = gdf[[id_column, 'geometry']].rename(columns={id_column: 'region_id'})
    logger.info(f"Loaded {len(gdf)} regions")
    return gdf


def load_boundary(path: Union[str, Path], crs=None):
    """
    Load an analysis-extent boundary (e.g. land) as a single geometry.

    Parameters
    ----------
    path : str or Path
        Vector file readable by geopandas.
    crs : optional
        If given, the boundary is transformed to this CRS before dissolving.

    Returns
    -------
    shapely geometry
        Union of all features.
    """
    gdf = gpd.read_file(path)
    if crs is not None and gdf.crs is not None:
        gdf = gdf.to_crs(crs)
    return unary_union(list(gdf.geometry))
