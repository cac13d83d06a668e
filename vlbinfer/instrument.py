"""
Station-based gain corruptions (RIME instrument model).

The gain parameters of an observation are indexed by ``(time, station)``
slots.  A :class:`GainCache` holds two sparse 0/1 design matrices that
map the gain vector onto the first and second station of every
measurement row, so that corrupting model visibilities is two sparse
matrix-vector products and an elementwise product::

    V_obs = (M1 @ g) * V_model * conj(M2 @ g)

The cache is built once per observation and never changes afterwards;
it can be shared between concurrent density evaluations.

Classes
-------
DesignMatrix
    Sparse incidence matrix with explicit construction and query.
GainCache
    Design matrices for both baseline endpoints plus the gain index.
GainModel
    Gain-corrupted visibility model.
CalTable
    Time x station table of gain values.

Functions
---------
corrupt
    Apply gains to model visibilities.
caltable
    Tabulate a gain vector by time and station.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from functools import partial
from typing import Hashable, Sequence

import numpy as np
import jax
import jax.numpy as jnp
from scipy import sparse

from .observation import ScanTable
from .skymodels import VisibilityModel
from . import config
from . import registry

logger = logging.getLogger(__name__)


# ===================================================================
#  Design matrices
# ===================================================================

class DesignMatrix:
    """Sparse ``(measurements x gains)`` incidence matrix.

    Construction (row, column, value triplets) and query (matrix times
    vector) are separate, explicit operations; the matrix is never
    densified.

    Parameters
    ----------
    matrix : scipy.sparse matrix
        Incidence pattern, converted to CSR.
    times : ndarray, shape ``(n_gains,)``
        Time of every gain slot (column).
    stations : sequence, length ``n_gains``
        Station of every gain slot (column).
    """

    def __init__(self, matrix, times, stations):
        self.matrix = sparse.csr_matrix(matrix)
        self.times = np.asarray(times, dtype=np.float64)
        self.stations = tuple(stations)
        if self.matrix.shape[1] != len(self.stations):
            raise ValueError(
                f"Design matrix has {self.matrix.shape[1]} columns but "
                f"{len(self.stations)} gain slots"
            )

        coo = self.matrix.tocoo()
        self._rows = jnp.asarray(coo.row, dtype=jnp.int32)
        self._cols = jnp.asarray(coo.col, dtype=jnp.int32)
        self._vals = jnp.asarray(coo.data)

    @classmethod
    def from_triplets(cls, rows, cols, values, shape, times, stations):
        """Build from coordinate triplets."""
        matrix = sparse.csr_matrix(
            (np.asarray(values, dtype=np.float64),
             (np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64))),
            shape=shape,
        )
        return cls(matrix, times, stations)

    @property
    def shape(self) -> tuple[int, int]:
        return self.matrix.shape

    @property
    def nnz(self) -> int:
        return int(self.matrix.nnz)

    def nonzeros(self):
        """``(rows, cols, values)`` of the stored entries, row-major."""
        coo = self.matrix.tocoo()
        return coo.row.copy(), coo.col.copy(), coo.data.copy()

    def row(self, i: int):
        """Column indices and values of measurement row ``i``."""
        lo, hi = self.matrix.indptr[i], self.matrix.indptr[i + 1]
        return self.matrix.indices[lo:hi].copy(), self.matrix.data[lo:hi].copy()

    def column(self, j: int):
        """Row indices and values of gain slot ``j``."""
        col = self.matrix.getcol(j).tocoo()
        return col.row.copy(), col.data.copy()

    def matvec(self, x):
        """Sparse matrix times dense vector, differentiable in ``x``.

        Gathers the referenced gain of every stored entry and sums the
        products per row, so the cost scales with the number of stored
        entries.
        """
        x = jnp.asarray(x)
        if x.shape[0] != self.shape[1]:
            raise ValueError(
                f"Expected a vector of length {self.shape[1]}, got {x.shape[0]}"
            )
        return jax.ops.segment_sum(
            self._vals * x[self._cols], self._rows,
            num_segments=self.shape[0], indices_are_sorted=True,
        )

    def __matmul__(self, x):
        return self.matvec(x)

    def __repr__(self):
        return f"DesignMatrix(shape={self.shape}, nnz={self.nnz})"


# ===================================================================
#  Gain cache
# ===================================================================

def gain_stations(
    scantable: ScanTable, segmentation: str = "scan",
) -> tuple[np.ndarray, list]:
    """Ordered ``(time, station)`` slots that index the gain vector.

    Parameters
    ----------
    scantable : ScanTable
        Observation scan structure.
    segmentation : {"scan", "track"}
        ``"scan"`` gives every station one slot per scan it observes in;
        ``"track"`` gives every station a single slot, timestamped with
        the first scan.
    """
    if segmentation not in config.GAIN_SEGMENTATIONS:
        raise ValueError(
            f"Unknown gain segmentation {segmentation!r}; expected one of "
            f"{config.GAIN_SEGMENTATIONS}"
        )
    times, stations = [], []
    if segmentation == "scan":
        for scan in scantable:
            scan_stations = scan.stations()
            stations.extend(scan_stations)
            times.extend([scan.time] * len(scan_stations))
    elif len(scantable):
        stations = scantable.stations()
        times = [scantable[0].time] * len(stations)
    return np.asarray(times, dtype=np.float64), stations


def _lookup(index, time, station, row):
    cols = index.get((time, station), ())
    if len(cols) != 1:
        raise ValueError(
            f"Measurement row {row}: expected exactly one gain slot for "
            f"(time={time}, station={station!r}), found {len(cols)}"
        )
    return cols[0]


def gain_design(
    scantable: ScanTable, segmentation: str = "scan",
) -> tuple[DesignMatrix, DesignMatrix]:
    """Design matrices for the first and second station of each row.

    Raises
    ------
    ValueError
        If a ``(time, station)`` lookup does not resolve to exactly one
        gain slot, which means the scan table is inconsistent (e.g. two
        scans share a timestamp).
    """
    gtimes, gstations = gain_stations(scantable, segmentation)

    index = defaultdict(list)
    for col, key in enumerate(zip(gtimes.tolist(), gstations)):
        index[key].append(col)

    rows, cols1, cols2 = [], [], []
    track_time = float(gtimes[0]) if len(gtimes) else None
    for row, (t, (s1, s2)) in enumerate(
        zip(scantable.times.tolist(), scantable.baselines)
    ):
        t = t if segmentation == "scan" else track_time
        rows.append(row)
        cols1.append(_lookup(index, t, s1, row))
        cols2.append(_lookup(index, t, s2, row))

    shape = (scantable.nmeasurements, len(gstations))
    ones = np.ones(len(rows))
    m1 = DesignMatrix.from_triplets(rows, cols1, ones, shape, gtimes, gstations)
    m2 = DesignMatrix.from_triplets(rows, cols2, ones, shape, gtimes, gstations)
    return m1, m2


class GainCache:
    """Precomputed gain design matrices of one observation.

    Use :meth:`from_scantable` to build it from the scan structure.

    Parameters
    ----------
    m1, m2 : DesignMatrix
        Design matrices of the first and second baseline station.
    times : ndarray, shape ``(n_gains,)``
        Time of every gain slot.
    stations : sequence, length ``n_gains``
        Station of every gain slot.
    """

    def __init__(self, m1: DesignMatrix, m2: DesignMatrix, times, stations):
        if m1.shape != m2.shape:
            raise ValueError(
                f"Design matrix shapes differ: {m1.shape} vs {m2.shape}"
            )
        self.m1 = m1
        self.m2 = m2
        self.times = np.asarray(times, dtype=np.float64)
        self.stations = tuple(stations)

    @classmethod
    def from_scantable(
        cls, scantable: ScanTable, segmentation: str | None = None,
    ) -> "GainCache":
        """Build the cache for an observation.

        Parameters
        ----------
        scantable : ScanTable
            Observation scan structure.
        segmentation : {"scan", "track"} or None
            Gain time segmentation.  Default ``config.GAIN_SEGMENTATION``.
        """
        if segmentation is None:
            segmentation = config.GAIN_SEGMENTATION
        m1, m2 = gain_design(scantable, segmentation)
        logger.info(
            "Built %s-segmented gain cache: %d gains, %d stations, %d rows.",
            segmentation, len(m1.stations), len(set(m1.stations)), m1.shape[0],
        )
        return cls(m1, m2, m1.times, m1.stations)

    @property
    def nparams(self) -> int:
        return len(self.stations)

    @property
    def nrows(self) -> int:
        return self.m1.shape[0]

    def __repr__(self):
        return f"GainCache(nparams={self.nparams}, nrows={self.nrows})"


# ===================================================================
#  Corruption
# ===================================================================

@partial(jax.custom_jvp, nondiff_argnums=(1,))
def corrupt(vis, cache: GainCache, gains):
    """Corrupt model visibilities with station gains.

    Parameters
    ----------
    vis : array_like, shape ``(n_rows,)``
        Model visibilities aligned with the cache rows.
    cache : GainCache
        Design matrices of the observation.
    gains : array_like, shape ``(n_gains,)``
        Complex gain of every ``(time, station)`` slot.

    Returns
    -------
    jax.Array
        ``g1 * vis * conj(g2)`` per row.
    """
    g1 = cache.m1.matvec(gains)
    g2 = cache.m2.matvec(gains)
    return g1 * vis * jnp.conj(g2)


@corrupt.defjvp
def _corrupt_jvp(cache, primals, tangents):
    # The corruption is linear in each factor, so the tangent is the
    # product rule applied to g1 * vis * conj(g2).
    vis, gains = primals
    dvis, dgains = tangents
    g1 = cache.m1.matvec(gains)
    cg2 = jnp.conj(cache.m2.matvec(gains))
    dg1 = cache.m1.matvec(dgains)
    dcg2 = jnp.conj(cache.m2.matvec(dgains))
    out = g1 * vis * cg2
    dout = dg1 * vis * cg2 + g1 * dvis * cg2 + g1 * vis * dcg2
    return out, dout


# ===================================================================
#  Gain-corrupted visibility model
# ===================================================================

class GainModel(VisibilityModel):
    """Visibility model corrupted by station gains.

    Visibilities and amplitudes are corrupted; closure phases and
    log-closure amplitudes are forwarded to the base model unchanged,
    since station gains cancel in both.

    Parameters
    ----------
    cache : GainCache
        Design matrices of the observation.
    gains : array_like, shape ``(n_gains,)``
        Complex gains in cache order.
    model : VisibilityModel
        Uncorrupted base model.
    """

    def __init__(self, cache: GainCache, gains, model: VisibilityModel):
        gains = jnp.asarray(gains)
        if gains.shape != (cache.nparams,):
            raise ValueError(
                f"Expected {cache.nparams} gains, got shape {gains.shape}"
            )
        self.cache = cache
        self.gains = gains
        self.model = model

    def visibilities(self, u, v):
        vis = self.model.visibilities(u, v)
        if vis.shape[0] != self.cache.nrows:
            raise ValueError(
                f"Gain cache covers {self.cache.nrows} measurement rows, "
                f"got {vis.shape[0]} coordinates"
            )
        return corrupt(vis, self.cache, self.gains)

    def closure_phases(self, *args):
        return self.model.closure_phases(*args)

    def logclosure_amplitudes(self, *args):
        return self.model.logclosure_amplitudes(*args)

    def caltable(self) -> "CalTable":
        return caltable(self.cache, self.gains)


# ===================================================================
#  Calibration tables
# ===================================================================

@dataclass(frozen=True, eq=False)
class CalTable:
    """Gain values arranged by time (rows) and station (columns).

    Entries for stations without a gain at a given time hold
    ``config.CALTABLE_FILL_VALUE``.
    """

    times: np.ndarray
    stations: tuple
    gains: np.ndarray

    def station(self, name: Hashable) -> np.ndarray:
        """Gain time series of one station."""
        try:
            j = self.stations.index(name)
        except ValueError:
            raise KeyError(f"Station {name!r} not in calibration table") from None
        return self.gains[:, j]

    def to_dict(self) -> dict:
        table = {"time": self.times}
        for j, name in enumerate(self.stations):
            table[name] = self.gains[:, j]
        return table

    def plot(self, backend: str | None = None, **kwargs):
        """Plot through a registered ``"caltable"`` backend."""
        if backend is None:
            backend = config.DEFAULT_PLOT_BACKEND
        return registry.get("caltable", backend)(self, **kwargs)


def caltable(cache: GainCache, gains: Sequence[complex]) -> CalTable:
    """Tabulate ``gains`` by time and station using the cache index."""
    gains = np.asarray(gains)
    if gains.shape != (cache.nparams,):
        raise ValueError(
            f"Expected {cache.nparams} gains, got shape {gains.shape}"
        )
    times = np.unique(cache.times)
    stations = tuple(sorted(set(cache.stations)))
    column = {name: j for j, name in enumerate(stations)}

    table = np.full(
        (len(times), len(stations)), config.CALTABLE_FILL_VALUE, dtype=complex,
    )
    rows = np.searchsorted(times, cache.times)
    cols = np.array([column[s] for s in cache.stations], dtype=int)
    table[rows, cols] = gains
    return CalTable(times, stations, table)
