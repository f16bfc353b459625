"""
Tests for regional statistics and weekly occupancy.
"""

import numpy as np
import pandas as pd
import geopandas as gpd
import pytest
from shapely.geometry import box

from pyabundance.errors import DomainMismatchError
from pyabundance.zonal import (
    Region,
    as_regions,
    days_of_occupation,
    iter_week_occupancy,
    region_masks,
    regional_stats,
    week_occupancy,
    weekly_stats,
)

N_ROWS, N_COLS = 4, 5


@pytest.fixture
def whole_domain():
    return [Region('all', box(0, 0, N_COLS, N_ROWS))]


@pytest.fixture
def halves():
    return gpd.GeoDataFrame(
        {'region_id': ['west', 'east']},
        geometry=[box(0, 0, 2, N_ROWS), box(2, 0, N_COLS, N_ROWS)],
        crs="EPSG:3857",
    )


@pytest.fixture
def masks_for(transform_for):
    def _masks(regions):
        return region_masks(as_regions(regions), transform_for(N_ROWS), (N_ROWS, N_COLS))
    return _masks


def _stat(stats, region_id, season, statistic):
    row = stats[
        (stats['region_id'] == region_id)
        & (stats['season'] == season)
        & (stats['statistic'] == statistic)
    ]
    assert len(row) == 1
    return row['value'].iloc[0]


class TestRegionMasks:
    """Tests for region_masks()"""

    def test_cell_centre_membership(self, masks_for):
        # covers the centre of column 0 (x = 0.5) but not of column 1 (x = 1.5)
        masks = masks_for([Region('strip', box(0, 0, 1.4, N_ROWS))])
        assert masks[0].mask.sum() == N_ROWS
        values = np.arange(N_ROWS * N_COLS, dtype=float).reshape(N_ROWS, N_COLS)
        np.testing.assert_array_equal(masks[0].extract(values), values[:, 0])

    def test_windowed_masks_partition_the_grid(self, masks_for, halves):
        masks = masks_for(halves)
        assert [m.mask.sum() for m in masks] == [2 * N_ROWS, 3 * N_ROWS]
        assert masks[1].cols == slice(2, N_COLS)

    def test_region_outside_grid(self, masks_for):
        masks = masks_for([Region('far', box(100, 100, 110, 110))])
        assert masks[0].mask.sum() == 0
        assert masks[0].extract(np.ones((N_ROWS, N_COLS))).size == 0

    def test_crs_mismatch(self, halves):
        with pytest.raises(DomainMismatchError):
            as_regions(halves.set_crs("EPSG:4326", allow_override=True), crs="EPSG:3857")


class TestWeekOccupancy:
    """Tests for week_occupancy()"""

    def test_threshold_is_exclusive(self, masks_for, whole_domain):
        masks = masks_for(whole_domain)
        values = np.zeros((N_ROWS, N_COLS))
        values[0, 0] = 1.0
        fraction, occupied, _ = week_occupancy(values, masks)
        assert fraction[0] == pytest.approx(0.05)
        assert not occupied[0]

        values[0, 1] = 1.0
        fraction, occupied, _ = week_occupancy(values, masks)
        assert fraction[0] == pytest.approx(0.10)
        assert occupied[0]

    def test_missing_cells_excluded(self, masks_for, whole_domain):
        values = np.full((N_ROWS, N_COLS), np.nan)
        values[0, :2] = [2.0, 0.0]
        fraction, occupied, mean = week_occupancy(values, masks_for(whole_domain))
        assert fraction[0] == pytest.approx(0.5)
        assert mean[0] == pytest.approx(1.0)

    def test_all_missing_region_is_unoccupied(self, masks_for, whole_domain):
        values = np.full((N_ROWS, N_COLS), np.nan)
        fraction, occupied, mean = week_occupancy(values, masks_for(whole_domain))
        assert fraction[0] == 0.0
        assert not occupied[0]
        assert np.isnan(mean[0])


class TestIterWeekOccupancy:
    """Tests for iter_week_occupancy()"""

    @pytest.fixture
    def cube(self, make_cube):
        rng = np.random.default_rng(3)
        values = rng.random((52, N_ROWS, N_COLS))
        values[values < 0.5] = 0.0
        return make_cube(values)

    def test_one_record_per_week(self, cube, halves):
        records = list(iter_week_occupancy(cube, halves))
        assert [r.week for r in records] == list(range(1, 53))
        assert records[0].region_ids == ('west', 'east')
        assert records[0].season is None

    def test_restart_matches_full_run(self, cube, halves):
        full = list(iter_week_occupancy(cube, halves))
        resumed = list(iter_week_occupancy(cube, halves, start_week=30))
        assert [r.week for r in resumed] == list(range(30, 53))
        for a, b in zip(full[29:], resumed):
            assert a.week == b.week
            assert a.date == b.date
            np.testing.assert_array_equal(a.fraction, b.fraction)
            np.testing.assert_array_equal(a.occupied, b.occupied)

    def test_selected_weeks_and_labels(self, cube, halves):
        labels = ['breeding' if w <= 10 else None for w in range(1, 53)]
        records = list(iter_week_occupancy(cube, halves, labels, weeks=[2, 5, 40]))
        assert [(r.week, r.season) for r in records] == [
            (2, 'breeding'), (5, 'breeding'), (40, None)
        ]

    def test_invalid_start_week(self, cube, halves):
        with pytest.raises(ValueError):
            list(iter_week_occupancy(cube, halves, start_week=0))

    def test_crs_mismatch(self, cube, halves):
        with pytest.raises(DomainMismatchError):
            list(iter_week_occupancy(cube, halves.to_crs("EPSG:4326")))


class TestDaysOfOccupation:
    """Tests for days_of_occupation()"""

    def test_counts_occupied_weeks(self, make_cube, halves):
        values = np.zeros((52, N_ROWS, N_COLS))
        values[0:2] = 1.0            # breeding weeks 1-2 fully occupied
        values[2, :, 0] = 1.0        # breeding week 3, west only
        labels = [None] * 52
        labels[0:4] = ['breeding'] * 4
        labels[4:8] = ['nonbreeding'] * 4
        days = days_of_occupation(make_cube(values), halves, labels)
        assert list(days.columns) == ['breeding', 'nonbreeding']
        assert days.loc['west', 'breeding'] == 21
        assert days.loc['east', 'breeding'] == 14
        assert days.loc['west', 'nonbreeding'] == 0

    def test_season_without_weeks_is_zero(self, make_cube, halves):
        labels = ['breeding'] * 4 + [None] * 48
        days = days_of_occupation(
            make_cube(np.ones((52, N_ROWS, N_COLS))), halves, labels,
            seasons=['breeding', 'postbreeding_migration'],
        )
        assert (days['postbreeding_migration'] == 0).all()
        assert (days['breeding'] == 28).all()


class TestRegionalStats:
    """Tests for regional_stats() and weekly_stats()"""

    @pytest.fixture
    def composite_values(self):
        return np.array([
            [1.0, 2.0, 0.0, 0.0, np.nan],
            [0.0, 0.0, 3.0, 0.0, np.nan],
            [0.0, 0.0, 0.0, 0.0, 0.0],
            [4.0, 0.0, 0.0, 0.0, 0.0],
        ])

    def test_whole_domain_region(self, make_cube, make_grid, composite_values, whole_domain):
        cube = make_cube(np.zeros((52, N_ROWS, N_COLS)))
        labels = ['breeding'] * 4 + [None] * 48
        stats = regional_stats(cube, {'breeding': make_grid(composite_values)}, labels,
                               whole_domain)
        assert _stat(stats, 'all', 'breeding', 'pct_population') == pytest.approx(1.0)
        assert _stat(stats, 'all', 'breeding', 'pct_range_in_region') == pytest.approx(1.0)
        assert _stat(stats, 'all', 'breeding', 'pct_region_occupied') == pytest.approx(4 / 18)
        assert _stat(stats, 'all', 'breeding', 'abundance_mean') == pytest.approx(10 / 18)
        assert _stat(stats, 'all', 'breeding', 'days_occupation') == 0

    def test_regions_split_population(self, make_cube, make_grid, composite_values, halves):
        cube = make_cube(np.zeros((52, N_ROWS, N_COLS)))
        labels = ['breeding'] * 4 + [None] * 48
        stats = regional_stats(cube, {'breeding': make_grid(composite_values)}, labels, halves)
        assert list(stats.columns) == ['region_id', 'season', 'statistic', 'value']
        west = _stat(stats, 'west', 'breeding', 'pct_population')
        east = _stat(stats, 'east', 'breeding', 'pct_population')
        assert west == pytest.approx(0.7)
        assert west + east == pytest.approx(1.0)
        assert _stat(stats, 'east', 'breeding', 'pct_range_in_region') == pytest.approx(0.25)

    def test_region_outside_grid_gives_nan(self, make_cube, make_grid, composite_values):
        cube = make_cube(np.zeros((52, N_ROWS, N_COLS)))
        stats = regional_stats(cube, {'breeding': make_grid(composite_values)},
                               [None] * 52, [Region('far', box(50, 50, 60, 60))])
        assert np.isnan(_stat(stats, 'far', 'breeding', 'abundance_mean'))
        assert _stat(stats, 'far', 'breeding', 'pct_population') == 0.0
        assert _stat(stats, 'far', 'breeding', 'days_occupation') == 0

    def test_composite_on_other_grid(self, make_cube, make_grid, whole_domain):
        cube = make_cube(np.zeros((52, N_ROWS, N_COLS)))
        with pytest.raises(DomainMismatchError):
            regional_stats(cube, {'breeding': make_grid(np.zeros((N_ROWS, N_COLS)), res=2.0)},
                           [None] * 52, whole_domain)

    def test_weekly_stats_layout(self, make_cube, halves):
        cube = make_cube(np.ones((52, N_ROWS, N_COLS)))
        weekly = weekly_stats(cube, halves)
        assert list(weekly.columns) == ['region_id', 'week', 'date', 'season', 'statistic', 'value']
        assert len(weekly) == 52 * 2 * 3
        occupied = weekly[weekly['statistic'] == 'occupied']
        assert (occupied['value'] == 1.0).all()
        assert isinstance(weekly, pd.DataFrame)
