"""
Tests for palettes and rendering configuration.
"""

import pytest

from pyabundance.bins import BinSpec
from pyabundance.classify import SeasonFlags
from pyabundance.palettes import (
    NO_PREDICTION_COLOR,
    SEASON_COLORS,
    ZERO_COLOR,
    abundance_palette,
    render_config,
)

BINS = BinSpec(breaks=tuple(float(b) for b in range(10)), power=0.5)


class TestAbundancePalette:
    """Tests for abundance_palette()"""

    def test_length_and_format(self):
        colors = abundance_palette(9)
        assert len(colors) == 9
        assert all(c.startswith('#') and len(c) == 7 for c in colors)

    def test_season_palettes_differ(self):
        assert abundance_palette(5, 'breeding') != abundance_palette(5, 'nonbreeding')

    def test_unknown_palette(self):
        with pytest.raises(ValueError):
            abundance_palette(5, 'winter')

    def test_invalid_count(self):
        with pytest.raises(ValueError):
            abundance_palette(0)


class TestRenderConfig:
    """Tests for render_config()"""

    def test_zero_and_missing_colors_distinct(self):
        config = render_config(SeasonFlags(True, False), BINS, ['breeding'])
        assert config['zero_color'] == ZERO_COLOR
        assert config['no_prediction_color'] == NO_PREDICTION_COLOR
        assert ZERO_COLOR != NO_PREDICTION_COLOR
        assert len(config['seasons']['breeding']['colors']) == 9
        assert config['breaks'] == list(BINS.breaks)

    def test_merged_migration_share_palette(self):
        seasons = ['prebreeding_migration', 'postbreeding_migration']
        config = render_config(SeasonFlags(False, False), BINS, seasons)
        pre = config['seasons']['prebreeding_migration']
        post = config['seasons']['postbreeding_migration']
        assert pre == post
        assert pre['label'] == 'migration'

    def test_split_migration_palettes(self):
        seasons = ['prebreeding_migration', 'postbreeding_migration']
        config = render_config(SeasonFlags(True, False), BINS, seasons)
        assert config['seasons']['prebreeding_migration'] != config['seasons']['postbreeding_migration']

    def test_yearround_overlay(self):
        assert render_config(SeasonFlags(True, False), BINS, [])['year_round'] is None
        shown = render_config(SeasonFlags(True, True), BINS, [])
        assert shown['year_round'] == SEASON_COLORS['year_round']

    def test_empty_bins(self):
        config = render_config(SeasonFlags(True, False), BinSpec((), 1.0), ['breeding'])
        assert config['breaks'] == []
        assert len(config['seasons']['breeding']['colors']) == 1
