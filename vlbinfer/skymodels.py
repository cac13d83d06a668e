"""
Visibility models.

Every model implements the same visibility-query capability set:
complex visibilities, amplitudes, closure phases and log-closure
amplitudes at given ``(u, v)`` coordinates.  Plain sky models only have
to provide :meth:`VisibilityModel.visibilities`; the closure quantities
are derived from it.  The gain-corrupted variant lives in
:mod:`vlbinfer.instrument` and overrides only the calibration-dependent
queries.

Coordinates ``u, v`` are in wavelengths, positions and sizes in radians.

Classes
-------
VisibilityModel
    Capability interface with derived closure quantities.
Gaussian
    Circular Gaussian component.
Point
    Point source.
AddModel
    Sum of two models (also available as ``model_a + model_b``).
"""

from __future__ import annotations

import numpy as np
import jax.numpy as jnp

_FWHM_TO_SIGMA = 1.0 / (2.0 * np.sqrt(2.0 * np.log(2.0)))


def _shift_phase(u, v, x0, y0):
    return jnp.exp(-2j * jnp.pi * (u * x0 + v * y0))


class VisibilityModel:
    """Base class of all visibility models."""

    def visibilities(self, u, v):
        """Complex visibilities at ``(u, v)``."""
        raise NotImplementedError

    def amplitudes(self, u, v):
        return jnp.abs(self.visibilities(u, v))

    def closure_phases(self, u1, v1, u2, v2, u3, v3):
        """Closure phases ``arg(V1 V2 V3)`` around a closed triangle.

        The three legs must be oriented head to tail, i.e. baselines
        ``(a, b)``, ``(b, c)``, ``(c, a)``.
        """
        bispectrum = (
            self.visibilities(u1, v1)
            * self.visibilities(u2, v2)
            * self.visibilities(u3, v3)
        )
        return jnp.angle(bispectrum)

    def logclosure_amplitudes(self, u1, v1, u2, v2, u3, v3, u4, v4):
        """Log closure amplitudes ``log(|V1||V2| / (|V3||V4|))``.

        For a quadrangle ``(a, b, c, d)`` the legs are ``(a, b)``,
        ``(c, d)`` in the numerator and ``(a, c)``, ``(b, d)`` in the
        denominator.
        """
        return (
            jnp.log(self.amplitudes(u1, v1)) + jnp.log(self.amplitudes(u2, v2))
            - jnp.log(self.amplitudes(u3, v3)) - jnp.log(self.amplitudes(u4, v4))
        )

    def __add__(self, other):
        return AddModel(self, other)


class Gaussian(VisibilityModel):
    """Circular Gaussian.

    Parameters
    ----------
    flux : float
        Total flux density [Jy].
    fwhm : float
        Full width at half maximum [rad].
    x0, y0 : float
        Offset of the centroid [rad].
    """

    def __init__(self, flux, fwhm, x0=0.0, y0=0.0):
        self.flux = flux
        self.fwhm = fwhm
        self.x0 = x0
        self.y0 = y0

    def visibilities(self, u, v):
        u = jnp.asarray(u)
        v = jnp.asarray(v)
        sigma = self.fwhm * _FWHM_TO_SIGMA
        envelope = jnp.exp(-2.0 * jnp.pi ** 2 * sigma ** 2 * (u ** 2 + v ** 2))
        return self.flux * envelope * _shift_phase(u, v, self.x0, self.y0)


class Point(VisibilityModel):
    """Point source of flux ``flux`` at ``(x0, y0)``."""

    def __init__(self, flux, x0=0.0, y0=0.0):
        self.flux = flux
        self.x0 = x0
        self.y0 = y0

    def visibilities(self, u, v):
        u = jnp.asarray(u)
        v = jnp.asarray(v)
        return self.flux * _shift_phase(u, v, self.x0, self.y0)


class AddModel(VisibilityModel):
    """Sum of two visibility models."""

    def __init__(self, m1: VisibilityModel, m2: VisibilityModel):
        self.m1 = m1
        self.m2 = m2

    def visibilities(self, u, v):
        return self.m1.visibilities(u, v) + self.m2.visibilities(u, v)
