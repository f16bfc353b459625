"""
Exceptions and warning categories raised by the pyabundance pipeline.
"""

import logging
import warnings

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Malformed, duplicate or unsupported season definition."""


class DomainMismatchError(ValueError):
    """Grids or regions that do not share a spatial reference frame."""


class EmptyInputWarning(UserWarning):
    """A season or bin computation had no usable input."""


class DegenerateRatioWarning(UserWarning):
    """A classifier ratio had a zero denominator."""


class GeometryDegeneracyWarning(UserWarning):
    """Polygonization produced an empty geometry."""


def warn(message: str, category: type, log: logging.Logger = logger) -> None:
    """
    Log a recoverable condition and emit it as a Python warning.

    Parameters
    ----------
    message : str
        Warning message.
    category : type
        Warning class, one of the categories defined in this module.
    log : logging.Logger, optional
        Logger of the calling module.
    """
    log.warning(message)
    warnings.warn(message, category, stacklevel=3)
