"""
Calibration-table plotting with matplotlib.

Nothing here is wired up automatically: call :func:`register_backends`
once at startup to make the plots available through
:meth:`vlbinfer.instrument.CalTable.plot`.

>>> from vlbinfer import plotting
>>> plotting.register_backends()
>>> fig = gains_model.caltable().plot(quantity="phase")
"""

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from . import config
from . import registry


def setup_ax_style(ax, xlabel, ylabel, show_grid=True):
    """Apply consistent style to an axis."""
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    if show_grid:
        ax.grid(True, linestyle=':', linewidth=0.5, alpha=0.6, color="gray")
    else:
        ax.grid(False)
    ax.tick_params(axis='both', which='major', direction='in', length=5, width=1.0)


def plot_caltable(table, ax=None, quantity="amplitude", stations=None, title=None):
    """Plot gain amplitudes or phases against time, one series per station.

    Parameters
    ----------
    table : CalTable
        Calibration table to plot.
    ax : matplotlib axis, optional
        Axis to draw into; a new figure is created if ``None``.
    quantity : {"amplitude", "phase"}
        Which part of the complex gain to show.  Phases are in degrees.
    stations : sequence, optional
        Subset of stations to plot.  Defaults to all.
    title : str, optional
        Axis title.

    Returns
    -------
    matplotlib.figure.Figure
    """
    if quantity == "amplitude":
        transform, ylabel = np.abs, "Gain amplitude"
    elif quantity == "phase":
        transform, ylabel = (lambda g: np.degrees(np.angle(g))), "Gain phase [deg]"
    else:
        raise ValueError(f"quantity must be 'amplitude' or 'phase', got {quantity!r}")

    with plt.rc_context(config.PLOT_STYLE):
        if ax is None:
            fig, ax = plt.subplots(figsize=(8, 4.5))
        else:
            fig = ax.figure

        names = table.stations if stations is None else stations
        for i, name in enumerate(names):
            gains = table.station(name)
            valid = np.isfinite(gains)
            marker = config.CALTABLE_MARKERS[i % len(config.CALTABLE_MARKERS)]
            ax.plot(
                table.times[valid], transform(gains[valid]),
                marker=marker, linestyle='-', lw=1.0, ms=5, label=str(name),
            )

        setup_ax_style(ax, "Time", ylabel)
        if title is not None:
            ax.set_title(title)
        ax.legend(loc='best', ncol=2, frameon=False)
        fig.tight_layout()
    return fig


def register_backends(overwrite=False):
    """Register the matplotlib handlers with :mod:`vlbinfer.registry`."""
    registry.register("caltable", "matplotlib", plot_caltable, overwrite=overwrite)
