"""
Range boundaries from seasonal abundance composites.

Each composite is thresholded into two cell masks, "range" (abundance > 0)
and "prediction_area" (any prediction made), which are polygonized,
dissolved, cleaned of small fragments and holes, smoothed and clipped to
the analysis extent.
"""

import logging
from dataclasses import dataclass
from typing import List, Literal, Mapping, Optional

import numpy as np
import xarray as xr
import geopandas as gpd
import shapely
from dask import delayed, compute
from dask.diagnostics import ProgressBar
from rasterio.features import shapes
from rasterio.transform import Affine
from scipy.ndimage import gaussian_filter1d
from shapely.geometry import LineString, MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from .errors import GeometryDegeneracyWarning, warn
from .utils import aggregate_array, cell_size, grid_transform

logger = logging.getLogger(__name__)

# Type alias for range layers
RangeLayer = Literal["range", "prediction_area"]
LAYERS = ("range", "prediction_area")

# Fragments and holes smaller than this many aggregated cells are removed
CRUMB_FACTOR = 1.5

# Smoothing kernel bandwidth in aggregated cell widths
SMOOTHNESS = 2.0

# Vertices per cell width when resampling rings before smoothing
DENSIFY = 5

# Ratio of a normal kernel's standard deviation to its bandwidth when the
# bandwidth spans the kernel's quartiles
_KERNEL_SD = 0.25 / 0.6745


@dataclass(frozen=True)
class RangePolygon:
    """
    Boundary of one layer for one season.

    Attributes
    ----------
    season : str
        Season name.
    layer : str
        'range' or 'prediction_area'.
    geometry : MultiPolygon
        Boundary, empty when the layer has no cells.
    """

    season: str
    layer: str
    geometry: MultiPolygon

    @property
    def is_empty(self) -> bool:
        return self.geometry.is_empty


def _polygons(geom: BaseGeometry) -> List[Polygon]:
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if hasattr(geom, 'geoms'):
        parts = []
        for g in geom.geoms:
            parts.extend(_polygons(g))
        return parts
    return []


def _multipolygon(parts: List[Polygon]) -> MultiPolygon:
    return MultiPolygon([p for p in parts if not p.is_empty])


def polygonize_mask(mask: np.ndarray, transform: Affine) -> MultiPolygon:
    """
    Dissolve the True cells of a mask into a (multi)polygon.

    Parameters
    ----------
    mask : np.ndarray
        Boolean 2D array.
    transform : Affine
        Affine transform of the grid.

    Returns
    -------
    MultiPolygon
        Union of all cell polygons, empty if no cell is True.
    """
    mask = np.asarray(mask, dtype=bool)
    if not mask.any():
        return MultiPolygon()
    pieces = [
        shape(geom)
        for geom, value in shapes(mask.astype(np.uint8), mask=mask, transform=transform)
        if value == 1
    ]
    return _multipolygon(_polygons(unary_union(pieces)))


def drop_crumbs(geom: BaseGeometry, threshold: float) -> MultiPolygon:
    """Remove polygon parts with an area below ``threshold``."""
    return _multipolygon([p for p in _polygons(geom) if p.area >= threshold])


def fill_holes(geom: BaseGeometry, threshold: float) -> MultiPolygon:
    """Fill interior rings enclosing an area below ``threshold``."""
    filled = []
    for poly in _polygons(geom):
        holes = [ring for ring in poly.interiors if Polygon(ring).area >= threshold]
        filled.append(Polygon(poly.exterior, holes))
    return _multipolygon(filled)


def smooth_ring(coords: np.ndarray, bandwidth: float, step: float) -> Optional[np.ndarray]:
    """
    Gaussian kernel smoothing of a closed ring.

    The ring is resampled at equal arc-length intervals of about ``step``
    and both coordinates are convolved with a normal kernel, wrapping
    around the ring.

    Parameters
    ----------
    coords : np.ndarray
        Closed ring coordinates of shape (n, 2).
    bandwidth : float
        Kernel bandwidth in map units.
    step : float
        Resampling interval in map units.

    Returns
    -------
    np.ndarray or None
        Closed smoothed ring, or None if the ring is too short to keep.
    """
    line = LineString(coords)
    n_points = int(np.ceil(line.length / step))
    if n_points < 4:
        return None
    distances = np.linspace(0.0, line.length, n_points, endpoint=False)
    points = shapely.get_coordinates(shapely.line_interpolate_point(line, distances))

    sigma = _KERNEL_SD * bandwidth / (line.length / n_points)
    xs = gaussian_filter1d(points[:, 0], sigma, mode='wrap')
    ys = gaussian_filter1d(points[:, 1], sigma, mode='wrap')
    ring = np.column_stack([xs, ys])
    return np.vstack([ring, ring[:1]])


def smooth_polygons(geom: BaseGeometry, bandwidth: float, step: float) -> MultiPolygon:
    """
    Smooth the exterior and interior rings of every polygon part.

    Parts whose smoothed rings self-intersect are repaired with
    ``shapely.make_valid`` and the result is dissolved.
    """
    smoothed = []
    for poly in _polygons(geom):
        exterior = smooth_ring(np.asarray(poly.exterior.coords), bandwidth, step)
        if exterior is None:
            continue
        holes = []
        for ring in poly.interiors:
            hole = smooth_ring(np.asarray(ring.coords), bandwidth, step)
            if hole is not None:
                holes.append(hole)
        candidate = Polygon(exterior, holes)
        if not candidate.is_valid:
            candidate = shapely.make_valid(candidate)
        smoothed.extend(_polygons(candidate))
    # neighbouring parts can overlap once smoothed
    return _multipolygon(_polygons(unary_union(smoothed)))


def clean_boundary(
    mask: np.ndarray,
    transform: Affine,
    smoothness: float = SMOOTHNESS,
    crumb_factor: float = CRUMB_FACTOR,
    clip: Optional[BaseGeometry] = None,
) -> MultiPolygon:
    """
    Polygonize a mask and clean, smooth and clip the result.

    Crumbs and holes below the threshold are removed before smoothing and
    again after clipping, so none survive in the output. A part that passed
    the first cleaning but would fall below the threshold once smoothed is
    kept unsmoothed, so smoothing never deletes part of a range.

    Parameters
    ----------
    mask : np.ndarray
        Boolean 2D array.
    transform : Affine
        Affine transform of the grid.
    smoothness : float, optional
        Kernel bandwidth in cell widths. Zero disables smoothing.
    crumb_factor : float, optional
        Area threshold in cell areas.
    clip : geometry, optional
        Extent to clip the result to.

    Returns
    -------
    MultiPolygon
        Cleaned boundary.
    """
    cell_w, cell_h = cell_size(transform)
    threshold = crumb_factor * cell_w * cell_h

    geom = polygonize_mask(mask, transform)
    geom = fill_holes(drop_crumbs(geom, threshold), threshold)
    if smoothness > 0:
        bandwidth, step = smoothness * cell_w, cell_w / DENSIFY
        parts = []
        for part in geom.geoms:
            smoothed = drop_crumbs(smooth_polygons(part, bandwidth, step), threshold)
            parts.extend(_polygons(smoothed) if not smoothed.is_empty else [part])
        geom = _multipolygon(_polygons(unary_union(parts)))
    if clip is not None:
        geom = geom.intersection(clip)
    return fill_holes(drop_crumbs(geom, threshold), threshold)


def season_ranges(
    composite: xr.DataArray,
    season: str,
    factor: int = 1,
    boundary: Optional[BaseGeometry] = None,
    smoothness: float = SMOOTHNESS,
    crumb_factor: float = CRUMB_FACTOR,
) -> List[RangePolygon]:
    """
    Range and prediction-area boundaries for one season composite.

    Parameters
    ----------
    composite : xr.DataArray
        Season composite grid.
    season : str
        Season name used to tag the output.
    factor : int, optional
        Aggregation factor applied before polygonizing. Default is 1.
    boundary : geometry, optional
        Analysis extent (e.g. land). The range is clipped to the boundary
        buffered by half an aggregated cell width; the prediction area to
        the boundary itself.
    smoothness : float, optional
        Kernel bandwidth in aggregated cell widths.
    crumb_factor : float, optional
        Crumb and hole threshold in aggregated cell areas.

    Returns
    -------
    list of RangePolygon
        One 'range' and one 'prediction_area' polygon, possibly empty.
    """
    values, transform = aggregate_array(composite.values, grid_transform(composite), factor)
    cell_w, _ = cell_size(transform)

    masks = {
        'range': values > 0,
        'prediction_area': ~np.isnan(values),
    }
    clips = {'range': None, 'prediction_area': None}
    if boundary is not None:
        clips = {'range': boundary.buffer(cell_w / 2), 'prediction_area': boundary}

    results = []
    for layer in LAYERS:
        geom = clean_boundary(
            masks[layer], transform,
            smoothness=smoothness, crumb_factor=crumb_factor, clip=clips[layer]
        )
        if geom.is_empty:
            warn(f"Empty {layer} polygon for season '{season}'",
                 GeometryDegeneracyWarning, logger)
        else:
            logger.debug(f"{season} {layer}: {len(geom.geoms)} parts, area {geom.area:.4g}")
        results.append(RangePolygon(season, layer, geom))
    return results


def range_polygons(
    composites: Mapping[str, xr.DataArray],
    factor: int = 1,
    boundary: Optional[BaseGeometry] = None,
    smoothness: float = SMOOTHNESS,
    crumb_factor: float = CRUMB_FACTOR,
    n_workers: Optional[int] = None,
) -> List[RangePolygon]:
    """
    Range boundaries for every season composite.

    Seasons are independent and can be polygonized in parallel with dask.

    Returns
    -------
    list of RangePolygon
        Two entries per season, in season order.
    """
    kwargs = dict(factor=factor, boundary=boundary, smoothness=smoothness,
                  crumb_factor=crumb_factor)
    if n_workers is None:
        per_season = [season_ranges(c, s, **kwargs) for s, c in composites.items()]
    else:
        logger.info(f"Polygonizing {len(composites)} seasons with {n_workers} workers")
        tasks = [delayed(season_ranges)(c, s, **kwargs) for s, c in composites.items()]
        with ProgressBar():
            per_season = compute(*tasks, num_workers=n_workers)
    return [rp for season in per_season for rp in season]


def ranges_to_geodataframe(ranges: List[RangePolygon], crs=None) -> gpd.GeoDataFrame:
    """Collect range polygons into a GeoDataFrame with season and layer columns."""
    return gpd.GeoDataFrame(
        {
            'season': [r.season for r in ranges],
            'layer': [r.layer for r in ranges],
        },
        geometry=[r.geometry for r in ranges],
        crs=crs,
    )
