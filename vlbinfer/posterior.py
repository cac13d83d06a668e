"""
Posterior densities and their reparametrized forms.

:class:`Posterior` combines a prior and a likelihood into a log-density
over named (constrained) parameters.  :class:`TransformedPosterior`
wraps it with one of the transforms of :mod:`vlbinfer.transforms` so
that samplers and optimizers can work with flat vectors:

- :func:`asflat` -- unconstrained ``R^n``, for gradient-based MCMC and
  optimizers;
- :func:`ascube` -- the unit hypercube, for nested samplers;
- :func:`flatten` -- flat vector on the prior's own support.

All objects are immutable and every evaluation is a pure function of
its input, so one posterior can be evaluated from several chains at
once.

Quick start
-----------
>>> post = Posterior(lklhd, prior)
>>> tpost = asflat(post)
>>> x0 = tpost.prior_sample(0)
>>> tpost.logdensity(x0), dimension(tpost)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import jax
import jax.numpy as jnp

from jax import random

from .transforms import CubeTransform, RawFlatTransform, Transform

logger = logging.getLogger(__name__)


def _as_key(key):
    """Accept ``None``, an integer seed or a JAX PRNG key."""
    if key is None:
        key = int(np.random.default_rng().integers(2 ** 31 - 1))
    if isinstance(key, (int, np.integer)):
        return random.PRNGKey(int(key))
    return key


def _concrete_bool(flag):
    """Python bool of ``flag``, or ``None`` under ``jit`` / ``vmap`` tracing."""
    try:
        return bool(flag)
    except jax.errors.ConcretizationTypeError:
        return None


# ===================================================================
#  Posterior
# ===================================================================

@dataclass(frozen=True, eq=False)
class Posterior:
    """Posterior density over the natural parameter space.

    Parameters
    ----------
    likelihood : callable
        ``likelihood(theta) -> log-likelihood``, typically a
        :class:`~vlbinfer.likelihood.RadioLikelihood`.
    prior : NamedPrior
        Anything with ``logdensity(theta)`` and ``sample(key)``; the
        transforms additionally need ``asflat()`` / ``ascube()``.
    """

    likelihood: Any
    prior: Any

    def logdensity(self, theta):
        """``log prior(theta) + log likelihood(theta)``.

        Returns ``-inf`` without calling the likelihood when the prior
        density is zero or undefined at ``theta``.  Under ``jax.jit`` or
        ``jax.vmap`` the finiteness of the prior is not known while
        tracing, so the likelihood is always evaluated and the result
        masked to ``-inf``; gradients at such points may be NaN.
        """
        lp = self.prior.logdensity(theta)
        finite = jnp.isfinite(lp)
        flag = _concrete_bool(finite)
        if flag is None:
            return jnp.where(finite, lp + self.likelihood(theta), -jnp.inf)
        if not flag:
            return jnp.asarray(-jnp.inf)
        return lp + self.likelihood(theta)

    def __call__(self, theta):
        return self.logdensity(theta)

    def prior_sample(self, key=None, n: int | None = None):
        """Draw from the prior.

        Parameters
        ----------
        key : int, PRNG key or None
            Seed; fresh entropy if ``None``.
        n : int or None
            Number of draws.  Returns a single draw if ``None`` and a
            list of draws otherwise.
        """
        key = _as_key(key)
        if n is None:
            return self.prior.sample(key)
        return [self.prior.sample(k) for k in random.split(key, n)]

    def skymodel(self, theta):
        return self.likelihood.skymodel(theta)

    def instrumentmodel(self, theta):
        return self.likelihood.instrumentmodel(theta)

    def vlbimodel(self, theta):
        return self.likelihood.vlbimodel(theta)

    def dataproducts(self) -> tuple:
        return self.likelihood.dataproducts()

    def simulate_observation(self, theta, key=None) -> tuple:
        """Posterior-predictive draw: one noisy copy of every data product."""
        return self.likelihood.simulate(theta, _as_key(key))

    def dimension(self) -> int:
        """Dimension of the unconstrained (``asflat``) parametrization."""
        return self.prior.asflat().dimension()


# ===================================================================
#  Transformed posterior
# ===================================================================

@dataclass(frozen=True, eq=False)
class TransformedPosterior:
    """A :class:`Posterior` seen through a reparametrization.

    Build it with :func:`asflat`, :func:`ascube` or :func:`flatten`.
    The log-density includes the log-Jacobian of the transformation.

    Evaluated eagerly (or under ``jax.grad``), points outside the prior
    support or the open unit cube return ``-inf`` without calling the
    likelihood.  The density can also be wrapped in ``jax.jit`` or
    ``jax.vmap``; the likelihood is then evaluated everywhere and
    masked, since the domain check cannot branch on traced values.
    """

    posterior: Posterior
    transformation: Transform

    def logdensity(self, x):
        x = jnp.asarray(x)
        if isinstance(self.transformation, CubeTransform):
            inside = CubeTransform.inside(x)
            flag = _concrete_bool(inside)
            if flag is False:
                return jnp.asarray(-jnp.inf)
            # The log-Jacobian is -log prior(theta), which cancels the
            # prior term exactly.
            theta = self.transformation.transform(x)
            if flag is None:
                return jnp.where(inside, self.posterior.likelihood(theta), -jnp.inf)
            return self.posterior.likelihood(theta)
        theta, logjac = self.transformation.transform_and_logjac(x)
        return self.posterior.logdensity(theta) + logjac

    def __call__(self, x):
        return self.logdensity(x)

    def logdensity_and_gradient(self, x):
        """Log-density and its gradient with respect to ``x``."""
        return jax.value_and_grad(self.logdensity)(jnp.asarray(x, dtype=float))

    def transform(self, x):
        """Map a working-space vector to named parameters."""
        return self.transformation.transform(x)

    def inverse(self, theta):
        """Map named parameters to the working space."""
        return self.transformation.inverse(theta)

    def dimension(self) -> int:
        return self.transformation.dimension()

    def prior_sample(self, key=None, n: int | None = None):
        """Prior draws mapped into the working space."""
        draws = self.posterior.prior_sample(key, n)
        if n is None:
            return self.inverse(draws)
        return [self.inverse(d) for d in draws]


# ===================================================================
#  Constructors
# ===================================================================

def asflat(post: Posterior) -> TransformedPosterior:
    """Reparametrize ``post`` onto unconstrained ``R^n``."""
    tpost = TransformedPosterior(post, post.prior.asflat())
    logger.info("Flat posterior with dimension %d.", tpost.dimension())
    return tpost


def ascube(post: Posterior) -> TransformedPosterior:
    """Reparametrize ``post`` onto the unit hypercube."""
    tpost = TransformedPosterior(post, post.prior.ascube())
    logger.info("Hypercube posterior with dimension %d.", tpost.dimension())
    return tpost


def flatten(post: Posterior) -> TransformedPosterior:
    """Flatten ``post`` into a vector without changing its support.

    The layout is taken from one prior draw.
    """
    tpost = TransformedPosterior(post, RawFlatTransform(post.prior_sample(0)))
    logger.info("Raw flattened posterior with dimension %d.", tpost.dimension())
    return tpost


def dimension(post) -> int:
    """Working-space dimension of a Posterior or TransformedPosterior."""
    return post.dimension()
