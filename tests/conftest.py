"""Pytest configuration and fixtures for pyabundance tests."""
import numpy as np
import pytest
import xarray as xr
import rasterio
import rioxarray  # noqa: F401
from rasterio.transform import Affine

from pyabundance.seasons import week_dates

CRS = "EPSG:3857"


def grid_coords(n_rows, n_cols, res=1.0):
    """Cell-centre coordinates of a north-up grid with its origin at (0, n_rows * res)."""
    xs = (np.arange(n_cols) + 0.5) * res
    ys = (n_rows - np.arange(n_rows) - 0.5) * res
    return ys, xs


def grid_transform(n_rows, res=1.0):
    return Affine(res, 0.0, 0.0, 0.0, -res, n_rows * res)


@pytest.fixture
def make_grid():
    """Factory for georeferenced 2D grids."""
    def _make(values, res=1.0, crs=CRS, name=None):
        values = np.asarray(values, dtype=np.float64)
        ys, xs = grid_coords(*values.shape, res=res)
        da = xr.DataArray(values, dims=['y', 'x'], coords={'y': ys, 'x': xs}, name=name)
        return da.rio.write_crs(crs)
    return _make


@pytest.fixture
def make_cube():
    """Factory for georeferenced (week, y, x) cubes."""
    def _make(values, res=1.0, crs=CRS):
        values = np.asarray(values, dtype=np.float64)
        ys, xs = grid_coords(*values.shape[1:], res=res)
        da = xr.DataArray(
            values,
            dims=['week', 'y', 'x'],
            coords={
                'week': np.arange(1, values.shape[0] + 1),
                'date': ('week', np.array(week_dates(values.shape[0]), dtype='datetime64[D]')),
                'y': ys,
                'x': xs,
            },
        )
        return da.rio.write_crs(crs)
    return _make


@pytest.fixture
def transform_for():
    """Transform of a grid built by make_grid / make_cube."""
    return grid_transform


@pytest.fixture
def write_cube(tmp_path):
    """Factory writing a multi-band GeoTIFF laid out like make_cube."""
    def _write(values, name='cube.tif', nodata=-9999.0, crs=CRS, res=1.0):
        values = np.asarray(values, dtype=np.float32)
        count, height, width = values.shape
        path = tmp_path / name
        with rasterio.open(
            path, 'w',
            driver='GTiff',
            height=height,
            width=width,
            count=count,
            dtype='float32',
            crs=crs,
            transform=grid_transform(height, res),
            nodata=nodata,
        ) as dst:
            dst.write(values)
        return path
    return _write
