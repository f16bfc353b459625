"""
Color palettes and rendering configuration for abundance maps.

Nothing here feeds back into the analysis: the season flags and bin
breakpoints are mapped to colors for whatever renderer consumes them.
"""

import logging
from typing import Dict, Iterable

import numpy as np
from matplotlib import colormaps
from matplotlib.colors import LinearSegmentedColormap, to_hex, to_rgb

from .bins import BinSpec
from .classify import SeasonFlags

logger = logging.getLogger(__name__)

SEASON_COLORS = {
    'breeding': '#cc503e',
    'nonbreeding': '#1d6996',
    'migration': '#edad08',
    'prebreeding_migration': '#73af48',
    'postbreeding_migration': '#5f4690',
    'year_round': '#6f6f6f',
}

# Cells predicted zero and cells with no prediction are both gray, but
# distinguishable
ZERO_COLOR = '#e6e6e6'
NO_PREDICTION_COLOR = '#bfbfbf'


def _season_colormap(color: str) -> LinearSegmentedColormap:
    base = np.array(to_rgb(color))
    light = base + (1.0 - base) * 0.85
    dark = base * 0.45
    return LinearSegmentedColormap.from_list(f"abundance_{color}", [light, base, dark])


def abundance_palette(n: int, season: str = 'weekly') -> list:
    """
    Hex colors for ``n`` abundance bins.

    Parameters
    ----------
    n : int
        Number of colors.
    season : str, optional
        'weekly' for the multi-hue weekly palette, or a key of
        SEASON_COLORS for a single-hue seasonal ramp.

    Returns
    -------
    list of str
        Hex colors, from low to high abundance.
    """
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    if season == 'weekly':
        cmap = colormaps['viridis']
    elif season in SEASON_COLORS:
        cmap = _season_colormap(SEASON_COLORS[season])
    else:
        raise ValueError(
            f"Unknown palette '{season}'. Available palettes: {['weekly'] + list(SEASON_COLORS)}"
        )
    return [to_hex(cmap(x)) for x in np.linspace(0, 1, n)]


def render_config(
    flags: SeasonFlags,
    bins: BinSpec,
    seasons: Iterable[str],
) -> Dict:
    """
    Rendering configuration derived from season flags and bins.

    Migration seasons share the 'migration' palette and label when
    ``flags.split_migration`` is False. A year-round overlay is included only
    when ``flags.show_yearround`` is True.

    Parameters
    ----------
    flags : SeasonFlags
        Classifier output.
    bins : BinSpec
        Breakpoints shared by the seasonal maps.
    seasons : iterable of str
        Seasons with composites.

    Returns
    -------
    dict
        Keys 'breaks', 'zero_color', 'no_prediction_color', 'seasons' (season
        to label and colors) and 'year_round' (overlay color or None).
    """
    n_colors = max(bins.n_bins, 1)
    config = {
        'breaks': list(bins.breaks),
        'zero_color': ZERO_COLOR,
        'no_prediction_color': NO_PREDICTION_COLOR,
        'seasons': {},
        'year_round': SEASON_COLORS['year_round'] if flags.show_yearround else None,
    }
    for season in seasons:
        palette = season
        if season.endswith('_migration') and not flags.split_migration:
            palette = 'migration'
        config['seasons'][season] = {
            'label': palette.replace('_', ' '),
            'colors': abundance_palette(n_colors, palette),
        }
    logger.debug(f"Render config for {list(config['seasons'])}")
    return config
