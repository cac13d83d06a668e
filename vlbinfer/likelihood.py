"""
Radio likelihoods for interferometric data products.

Each data product holds measurement coordinates, measured values and
1-sigma uncertainties and scores a
:class:`~vlbinfer.skymodels.VisibilityModel` against them.  Gaussian
products use NIFTy's ``Gaussian`` likelihood for the chi-square energy
and add the normalisation constant, so the returned values are proper
log-densities.  :class:`RadioLikelihood` combines data products with a
sky model (and optionally a gain model) evaluated from named parameters.

Classes
-------
ComplexVisibilities, VisibilityAmplitudes, ClosurePhases, LogClosureAmplitudes
    Data products.
RadioLikelihood
    Log-likelihood of named parameters given a set of data products.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable

import numpy as np
import jax.numpy as jnp
import nifty8.re as jft

from jax import random
from jax.scipy.special import i0e

from .instrument import GainCache, GainModel
from .skymodels import VisibilityModel
from . import config

logger = logging.getLogger(__name__)


class _DiagCovInv:
    """Pickleable diagonal inverse covariance operator for ``jft.Gaussian``."""

    def __init__(self, inv_var):
        self._inv_var = inv_var

    def __call__(self, tangents):
        return self._inv_var * tangents


def _as_array(x, dtype=np.float64):
    return np.atleast_1d(np.asarray(x, dtype=dtype))


def _effective_sigma(noise, values, fractional):
    noise = np.broadcast_to(_as_array(noise), values.shape)
    sigma = np.sqrt(noise ** 2 + (fractional * np.abs(values)) ** 2)
    return np.maximum(sigma, config.MIN_NOISE)


class _GaussianProduct:
    """Shared Gaussian scoring for data products with real-valued data."""

    def _build_gaussian(self, data, sigma):
        self._lh = jft.Gaussian(
            data=jnp.asarray(data),
            noise_cov_inv=_DiagCovInv(jnp.asarray(1.0 / sigma ** 2)),
        )
        self._lognorm = float(-0.5 * np.sum(np.log(2.0 * np.pi * sigma ** 2)))

    def _score(self, prediction):
        return self._lognorm - self._lh.energy(prediction)

    def __len__(self):
        return len(self.sigma)


# ===================================================================
#  Data products
# ===================================================================

@dataclasses.dataclass(eq=False)
class ComplexVisibilities(_GaussianProduct):
    """Complex visibilities with independent Gaussian noise on the
    real and imaginary parts.

    Parameters
    ----------
    u, v : array_like, shape ``(N,)``
        Baseline coordinates [wavelengths], aligned with the scan-ordered
        measurement rows.
    vis : array_like, shape ``(N,)``
        Measured complex visibilities [Jy].
    noise : float or array_like, shape ``(N,)``
        Per-component 1-sigma thermal noise [Jy].
    fractional_noise : float or None
        Fractional systematic error added in quadrature.  Default
        ``config.FRACTIONAL_NOISE``.
    """

    u: Any
    v: Any
    vis: Any
    noise: Any
    fractional_noise: float | None = None

    def __post_init__(self):
        self.u = _as_array(self.u)
        self.v = _as_array(self.v)
        self.vis = _as_array(self.vis, dtype=np.complex128)
        if self.fractional_noise is None:
            self.fractional_noise = config.FRACTIONAL_NOISE
        self.sigma = _effective_sigma(self.noise, self.vis, self.fractional_noise)
        self._build_gaussian(
            np.stack([self.vis.real, self.vis.imag]),
            np.stack([self.sigma, self.sigma]),
        )

    def predict(self, model: VisibilityModel):
        return model.visibilities(self.u, self.v)

    def loglikelihood(self, model: VisibilityModel):
        pred = self.predict(model)
        return self._score(jnp.stack([jnp.real(pred), jnp.imag(pred)]))

    def simulate(self, model: VisibilityModel, key):
        pred = np.asarray(self.predict(model))
        k_re, k_im = random.split(key)
        noise = (
            np.asarray(random.normal(k_re, pred.shape))
            + 1j * np.asarray(random.normal(k_im, pred.shape))
        )
        return dataclasses.replace(
            self, vis=pred + self.sigma * noise, noise=self.sigma,
            fractional_noise=0.0,
        )


@dataclasses.dataclass(eq=False)
class VisibilityAmplitudes(_GaussianProduct):
    """Visibility amplitudes with Gaussian noise.

    Parameters
    ----------
    u, v : array_like, shape ``(N,)``
        Baseline coordinates [wavelengths].
    amp : array_like, shape ``(N,)``
        Measured amplitudes [Jy].
    noise : float or array_like
        1-sigma noise [Jy].
    fractional_noise : float or None
        Fractional systematic error added in quadrature.
    """

    u: Any
    v: Any
    amp: Any
    noise: Any
    fractional_noise: float | None = None

    def __post_init__(self):
        self.u = _as_array(self.u)
        self.v = _as_array(self.v)
        self.amp = _as_array(self.amp)
        if self.fractional_noise is None:
            self.fractional_noise = config.FRACTIONAL_NOISE
        self.sigma = _effective_sigma(self.noise, self.amp, self.fractional_noise)
        self._build_gaussian(self.amp, self.sigma)

    def predict(self, model: VisibilityModel):
        return model.amplitudes(self.u, self.v)

    def loglikelihood(self, model: VisibilityModel):
        return self._score(self.predict(model))

    def simulate(self, model: VisibilityModel, key):
        pred = np.asarray(self.predict(model))
        draw = pred + self.sigma * np.asarray(random.normal(key, pred.shape))
        return dataclasses.replace(
            self, amp=draw, noise=self.sigma, fractional_noise=0.0,
        )


@dataclasses.dataclass(eq=False)
class LogClosureAmplitudes(_GaussianProduct):
    """Log closure amplitudes with Gaussian noise.

    The four legs of each quadrangle follow
    :meth:`VisibilityModel.logclosure_amplitudes`.
    """

    u1: Any
    v1: Any
    u2: Any
    v2: Any
    u3: Any
    v3: Any
    u4: Any
    v4: Any
    lcamp: Any
    noise: Any

    def __post_init__(self):
        for name in ("u1", "v1", "u2", "v2", "u3", "v3", "u4", "v4"):
            setattr(self, name, _as_array(getattr(self, name)))
        self.lcamp = _as_array(self.lcamp)
        self.sigma = _effective_sigma(self.noise, self.lcamp, 0.0)
        self._build_gaussian(self.lcamp, self.sigma)

    def predict(self, model: VisibilityModel):
        return model.logclosure_amplitudes(
            self.u1, self.v1, self.u2, self.v2,
            self.u3, self.v3, self.u4, self.v4,
        )

    def loglikelihood(self, model: VisibilityModel):
        return self._score(self.predict(model))

    def simulate(self, model: VisibilityModel, key):
        pred = np.asarray(self.predict(model))
        draw = pred + self.sigma * np.asarray(random.normal(key, pred.shape))
        return dataclasses.replace(self, lcamp=draw, noise=self.sigma)


@dataclasses.dataclass(eq=False)
class ClosurePhases:
    """Closure phases with a von Mises likelihood.

    The concentration of every closure phase is ``1 / sigma**2``, which
    reduces to a Gaussian for small ``sigma`` but respects the
    periodicity of the phase.  Simulated phases are drawn from the same
    von Mises model.  The three legs of each triangle follow
    :meth:`VisibilityModel.closure_phases`.
    """

    u1: Any
    v1: Any
    u2: Any
    v2: Any
    u3: Any
    v3: Any
    phase: Any
    noise: Any

    def __post_init__(self):
        for name in ("u1", "v1", "u2", "v2", "u3", "v3"):
            setattr(self, name, _as_array(getattr(self, name)))
        self.phase = _as_array(self.phase)
        self.sigma = _effective_sigma(self.noise, self.phase, 0.0)
        self._kappa = 1.0 / self.sigma ** 2
        # log I0(kappa) = log(i0e(kappa)) + kappa; the kappa cancels below.
        self._lognorm = float(-np.sum(
            np.log(2.0 * np.pi) + np.log(np.asarray(i0e(self._kappa)))
        ))

    def __len__(self):
        return len(self.sigma)

    def predict(self, model: VisibilityModel):
        return model.closure_phases(
            self.u1, self.v1, self.u2, self.v2, self.u3, self.v3,
        )

    def loglikelihood(self, model: VisibilityModel):
        resid = self.phase - self.predict(model)
        return self._lognorm + jnp.sum(self._kappa * (jnp.cos(resid) - 1.0))

    def simulate(self, model: VisibilityModel, key):
        """Draw closure phases from the von Mises model around ``model``."""
        pred = np.asarray(self.predict(model))
        seed = int(random.randint(key, (), 0, 2 ** 31 - 1))
        draw = np.random.default_rng(seed).vonmises(pred, self._kappa)
        return dataclasses.replace(self, phase=np.angle(np.exp(1j * draw)), noise=self.sigma)


# ===================================================================
#  Combined likelihood
# ===================================================================

class RadioLikelihood:
    """Log-likelihood of named parameters for a set of data products.

    Parameters
    ----------
    sky : callable
        ``sky(theta, skymeta) -> VisibilityModel``.
    *dataproducts
        One or more data products scored against the model.
    skymeta : any
        Fixed metadata passed to ``sky``.
    instrument : callable or None
        ``instrument(theta, instrumentmeta) -> gains``, complex gains in
        the order of ``gaincache``.  Omit for calibration-independent
        (closure-only) fits.
    instrumentmeta : any
        Fixed metadata passed to ``instrument``.
    gaincache : GainCache or None
        Required when ``instrument`` is given.

    Examples
    --------
    >>> def sky(theta, meta):
    ...     return Gaussian(theta["flux"], theta["fwhm"])
    >>> lklhd = RadioLikelihood(sky, ClosurePhases(...), LogClosureAmplitudes(...))
    >>> lklhd({"flux": 1.0, "fwhm": 1e-10})
    """

    def __init__(
        self,
        sky: Callable[[Any, Any], VisibilityModel],
        *dataproducts,
        skymeta: Any = None,
        instrument: Callable[[Any, Any], Any] | None = None,
        instrumentmeta: Any = None,
        gaincache: GainCache | None = None,
    ):
        if not dataproducts:
            raise ValueError("RadioLikelihood needs at least one data product")
        if instrument is not None and gaincache is None:
            raise ValueError("An instrument model requires a GainCache")
        self.sky = sky
        self.skymeta = skymeta
        self.instrument = instrument
        self.instrumentmeta = instrumentmeta
        self.gaincache = gaincache
        self._dataproducts = tuple(dataproducts)

        logger.info(
            "Radio likelihood over %s; instrument model: %s.",
            ", ".join(f"{type(d).__name__}[{len(d)}]" for d in self._dataproducts),
            "none" if instrument is None else f"{gaincache.nparams} gains",
        )

    def dataproducts(self) -> tuple:
        return self._dataproducts

    def skymodel(self, theta) -> VisibilityModel:
        return self.sky(theta, self.skymeta)

    def instrumentmodel(self, theta):
        """Complex gain vector at ``theta`` (``None`` without instrument)."""
        if self.instrument is None:
            return None
        return jnp.asarray(self.instrument(theta, self.instrumentmeta))

    def vlbimodel(self, theta) -> VisibilityModel:
        """Sky model, gain-corrupted when an instrument model is present."""
        sky = self.skymodel(theta)
        if self.instrument is None:
            return sky
        return GainModel(self.gaincache, self.instrumentmodel(theta), sky)

    def loglikelihood(self, theta):
        model = self.vlbimodel(theta)
        return sum(d.loglikelihood(model) for d in self._dataproducts)

    def __call__(self, theta):
        return self.loglikelihood(theta)

    def simulate(self, theta, key) -> tuple:
        """One noisy copy of every data product around the model at ``theta``."""
        model = self.vlbimodel(theta)
        keys = random.split(key, len(self._dataproducts))
        return tuple(d.simulate(model, k) for d, k in zip(self._dataproducts, keys))
