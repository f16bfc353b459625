"""
End-to-end tests for the SeasonalAbundance pipeline.
"""

import json
from datetime import date

import numpy as np
import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from pyabundance import SeasonalAbundance, SeasonDefinition
from pyabundance.errors import ConfigurationError, DomainMismatchError

SIZE = 4


@pytest.fixture
def seasons():
    # weeks 1-4 (Jan 3 - Jan 24) and weeks 5-8 (Jan 31 - Feb 21)
    return [
        SeasonDefinition('nonbreeding', date(2022, 1, 1), date(2022, 1, 30)),
        SeasonDefinition('prebreeding_migration', date(2022, 1, 31), date(2022, 2, 27)),
        SeasonDefinition('breeding'),
    ]


@pytest.fixture
def cube(make_cube):
    values = np.ones((52, SIZE, SIZE))
    values[0:4, 0, 0] = [1.0, 0.0, 1.0, 0.0]
    values[4:8, 0, 0] = np.nan
    return make_cube(values)


@pytest.fixture
def regions():
    # top-left cell only
    return gpd.GeoDataFrame(
        {'region_id': ['corner']},
        geometry=[box(0, SIZE - 1, 1, SIZE)],
        crs="EPSG:3857",
    )


@pytest.fixture
def sa(cube, seasons, regions):
    return SeasonalAbundance(cube, seasons, species_code='testsp', regions=regions)


class TestSeasonalAbundance:
    """Tests for the SeasonalAbundance stages"""

    def test_labels(self, sa):
        assert sa.labels[:9] == ['nonbreeding'] * 4 + ['prebreeding_migration'] * 4 + [None]
        assert set(sa.labels[8:]) == {None}
        assert sa.reviewed_seasons == ['nonbreeding', 'prebreeding_migration']

    def test_composites(self, sa):
        composites = sa.composites()
        assert list(composites) == ['nonbreeding', 'prebreeding_migration']
        assert composites['nonbreeding'].values[0, 0] == pytest.approx(0.5)
        assert np.isnan(composites['prebreeding_migration'].values[0, 0])
        assert composites['prebreeding_migration'].values[1, 1] == 1.0

    def test_input_cube_not_modified(self, sa, cube):
        before = cube.values.copy()
        sa.composites()
        sa.flags()
        sa.regional_stats()
        np.testing.assert_array_equal(cube.values, before)

    def test_flags_with_one_migration_season(self, sa):
        flags = sa.flags()
        assert flags.split_migration is True
        assert flags.show_yearround is False

    def test_days_of_occupation(self, sa):
        stats = sa.regional_stats()
        days = stats[stats['statistic'] == 'days_occupation'].set_index('season')['value']
        assert days['nonbreeding'] == 14
        assert days['prebreeding_migration'] == 0
        assert (stats['species_code'] == 'testsp').all()

    def test_weekly_occupancy_resumes(self, sa):
        records = list(sa.weekly_occupancy(start_week=3))
        assert records[0].week == 3
        assert records[0].season == 'nonbreeding'
        assert records[0].occupied[0]
        assert not records[1].occupied[0]

    def test_ranges(self, sa):
        ranges = sa.ranges()
        assert [(r.season, r.layer) for r in ranges] == [
            ('nonbreeding', 'range'), ('nonbreeding', 'prediction_area'),
            ('prebreeding_migration', 'range'), ('prebreeding_migration', 'prediction_area'),
        ]
        assert not any(r.is_empty for r in ranges)

    def test_bins(self, sa):
        bins = sa.bins()
        assert bins.breaks[0] == pytest.approx(0.5)
        assert bins.breaks[-1] == pytest.approx(1.0)


class TestValidation:
    """Tests for input validation"""

    def test_duplicate_season_names_species(self, cube):
        seasons = [
            SeasonDefinition('breeding', date(2022, 5, 1), date(2022, 6, 1)),
            SeasonDefinition('breeding', date(2022, 6, 2), date(2022, 7, 1)),
        ]
        with pytest.raises(ConfigurationError, match='testsp'):
            SeasonalAbundance(cube, seasons, species_code='testsp')

    def test_wrong_band_count(self, make_cube, seasons):
        with pytest.raises(DomainMismatchError):
            SeasonalAbundance(make_cube(np.ones((12, SIZE, SIZE))), seasons)

    def test_unknown_parameter(self, cube, seasons):
        with pytest.raises(ValueError):
            SeasonalAbundance(cube, seasons, params={'n_bin': 5})

    def test_invalid_aggregation_factor(self, cube, seasons):
        with pytest.raises(ValueError):
            SeasonalAbundance(cube, seasons, aggregation_factor=0)

    def test_no_regions(self, cube, seasons):
        with pytest.raises(ValueError):
            SeasonalAbundance(cube, seasons).regional_stats()

    def test_regions_in_other_crs(self, cube, seasons, regions):
        sa = SeasonalAbundance(cube, seasons, species_code='testsp',
                               regions=regions.to_crs("EPSG:4326"))
        with pytest.raises(DomainMismatchError, match='testsp'):
            sa.regional_stats()


class TestProcess:
    """Tests for writing outputs"""

    def test_process_sequential(self, sa, tmp_path):
        paths = sa.process_sequential(tmp_path / 'out')
        for name in ('nonbreeding', 'prebreeding_migration', 'annual', 'ranges',
                     'config', 'regional_stats'):
            assert paths[name].exists()

        with open(paths['config']) as f:
            config = json.load(f)
        assert config['species_code'] == 'testsp'
        assert config['flags']['split_migration'] is True
        assert set(config['render']['seasons']) == {'nonbreeding', 'prebreeding_migration'}

        ranges = gpd.read_file(paths['ranges'])
        assert len(ranges) == 4
        stats = pd.read_csv(paths['regional_stats'])
        assert set(stats['statistic']) == {
            'abundance_mean', 'pct_population', 'pct_region_occupied',
            'pct_range_in_region', 'days_occupation',
        }

    def test_process_parallel_matches_sequential(self, cube, seasons, regions, tmp_path):
        seq = SeasonalAbundance(cube, seasons, species_code='a', regions=regions)
        par = SeasonalAbundance(cube, seasons, species_code='b', regions=regions)
        seq.process_sequential(tmp_path / 'seq')
        par.process(tmp_path / 'par', n_workers=2)
        for season in seq.composites():
            np.testing.assert_array_equal(
                seq.composites()[season].values, par.composites()[season].values
            )
        pd.testing.assert_frame_equal(
            seq.regional_stats().drop(columns='species_code'),
            par.regional_stats().drop(columns='species_code'),
        )
