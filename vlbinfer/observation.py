"""
Scan structure of an interferometric observation.

An observation is an ordered sequence of scans; each scan has a single
timestamp and a set of baseline measurements, each referencing two
stations.  Flattening the scans in order gives the measurement rows that
data products and gain design matrices are aligned with.  Loading and
averaging of the underlying visibility tables happens upstream.

Classes
-------
Scan
    One timestamp and its baselines.
ScanTable
    Ordered collection of scans.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Iterator, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scan:
    """A single scan.

    Parameters
    ----------
    time : float
        Scan timestamp (any monotonic unit, typically hours).
    baselines : tuple of (station, station)
        Station pair of every measurement in the scan, in row order.
    """

    time: float
    baselines: tuple[tuple[Hashable, Hashable], ...]

    def __post_init__(self):
        object.__setattr__(
            self, "baselines", tuple((s1, s2) for s1, s2 in self.baselines)
        )

    def __len__(self) -> int:
        return len(self.baselines)

    def stations(self) -> list:
        """Sorted distinct stations participating in the scan."""
        return sorted({s for bl in self.baselines for s in bl})


@dataclass(frozen=True)
class ScanTable:
    """Ordered scans of one observation.

    Parameters
    ----------
    scans : sequence of Scan
        Scans in observing order.
    """

    scans: tuple[Scan, ...]

    def __post_init__(self):
        object.__setattr__(self, "scans", tuple(self.scans))

    @classmethod
    def from_measurements(
        cls,
        times: Sequence[float],
        station1: Sequence[Hashable],
        station2: Sequence[Hashable],
    ) -> "ScanTable":
        """Group scan-ordered measurement rows into scans.

        Consecutive rows with equal timestamps form one scan.

        Parameters
        ----------
        times : array_like, shape ``(N,)``
            Timestamp of every measurement row.
        station1, station2 : sequence, length ``N``
            First and second station of every baseline.

        Raises
        ------
        ValueError
            If the inputs differ in length or the timestamps decrease.
        """
        times = np.asarray(times, dtype=np.float64)
        if not (len(times) == len(station1) == len(station2)):
            raise ValueError(
                "times, station1 and station2 must have the same length, got "
                f"{len(times)}, {len(station1)}, {len(station2)}"
            )
        if np.any(np.diff(times) < 0):
            raise ValueError("Measurement rows must be ordered by time")

        scans = []
        if len(times):
            breaks = np.flatnonzero(np.diff(times) != 0) + 1
            for rows in np.split(np.arange(len(times)), breaks):
                scans.append(Scan(
                    float(times[rows[0]]),
                    tuple((station1[i], station2[i]) for i in rows),
                ))

        logger.info(
            "Grouped %d measurements into %d scans.", len(times), len(scans),
        )
        return cls(tuple(scans))

    def __len__(self) -> int:
        return len(self.scans)

    def __iter__(self) -> Iterator[Scan]:
        return iter(self.scans)

    def __getitem__(self, i: int) -> Scan:
        return self.scans[i]

    @property
    def nmeasurements(self) -> int:
        return sum(len(s) for s in self.scans)

    @property
    def times(self) -> np.ndarray:
        """Per-measurement timestamps, scan-ordered."""
        return np.array(
            [s.time for s in self.scans for _ in s.baselines], dtype=np.float64,
        )

    @property
    def baselines(self) -> list[tuple[Hashable, Hashable]]:
        """Per-measurement station pairs, scan-ordered."""
        return [bl for s in self.scans for bl in s.baselines]

    def stations(self) -> list:
        """Sorted distinct stations over the whole observation."""
        return sorted({st for s in self.scans for st in s.stations()})
