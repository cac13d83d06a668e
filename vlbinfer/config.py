"""
Configuration parameters for the vlbinfer package.

All tunable constants are centralised here so they can be inspected and
overridden before building a likelihood or posterior.  Values are
grouped by category and each constant is documented inline.

Usage
-----
>>> from vlbinfer import config
>>> config.FRACTIONAL_NOISE = 0.02        # override before building data products
>>> config.GAIN_SEGMENTATION = "track"    # one gain per station for the whole track
"""

import numpy as np


# ===========================================================================
#  Random numbers
# ===========================================================================

DEFAULT_SEED = 42
"""Seed used by the example scripts when none is given."""


# ===========================================================================
#  Instrument model
# ===========================================================================

GAIN_SEGMENTATION = "scan"
"""Default time segmentation of the gain parameters.
    "scan"  : one complex gain per station per scan.
    "track" : one complex gain per station for the whole observation.
    """

GAIN_SEGMENTATIONS = ("scan", "track")
"""Segmentations understood by :class:`~vlbinfer.instrument.GainCache`."""

CALTABLE_FILL_VALUE = np.nan + 1j * np.nan
"""Entry used in a calibration table where a station has no gain."""


# ===========================================================================
#  Noise model
# ===========================================================================

FRACTIONAL_NOISE = 0.0
"""Fractional systematic error added in quadrature to visibility and
    amplitude uncertainties.  0.01 = 1% of the measured amplitude.
    Typical values for EHT-like data are 0.01 - 0.02 to absorb
    non-closing errors.
    """

MIN_NOISE = 1e-12
"""Floor applied to measurement uncertainties before inversion."""


# ===========================================================================
#  Plotting / reporting
# ===========================================================================

DEFAULT_PLOT_BACKEND = "matplotlib"
"""Backend name looked up in the registry by ``CalTable.plot``."""

PLOT_STYLE = {
    "font.family": "serif",
    "font.size": 12,
    "axes.labelsize": 14,
    "axes.titlesize": 14,
    "xtick.labelsize": 11,
    "ytick.labelsize": 11,
    "legend.fontsize": 10,
    "figure.dpi": 150,
}
"""Matplotlib rc overrides used by :mod:`vlbinfer.plotting`."""

CALTABLE_MARKERS = ("o", "s", "^", "v", "D", "P", "X", "*")
"""Marker cycle for stations in calibration-table plots."""
