"""
Prior distributions over named model parameters.

Every component distribution knows three things about itself: its
log-density, how to draw from it, and how to reach its support from an
unconstrained vector (``from_flat``) or from the unit interval
(``from_cube``, the inverse CDF).  :class:`NamedPrior` combines
components into a product distribution over a (possibly nested) dict of
parameters, which is what :class:`~vlbinfer.posterior.Posterior`
consumes.

Parameter names follow the NIFTy prior convention: ``mean``/``std`` for
normal-type priors and ``a_min``/``a_max`` for bounded ones.

Classes
-------
Distribution
    Base class of the component distributions.
Normal, LogNormal, Uniform, Exponential, UniformAngle
    Concrete components.
NamedPrior
    Product distribution over a dict of components.
"""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np
import jax
import jax.numpy as jnp

from jax import random
from jax.scipy.special import logit, ndtr, ndtri


def _numel(shape) -> int:
    return int(np.prod(shape, dtype=int))


# ===================================================================
#  Component distributions
# ===================================================================

class Distribution:
    """Base class for a component prior with a fixed array shape.

    Subclasses implement the elementwise pieces (``_logpdf``,
    ``_in_support``, ``_sample``, the flat bijection and the CDF pair);
    this class sums them into scalar densities and log-Jacobians.

    Parameters
    ----------
    shape : tuple of int
        Array shape of one draw.  ``()`` for a scalar parameter.
    """

    flat_dof = 1
    """Unconstrained coordinates per element (2 for lifted angles)."""

    def __init__(self, shape=()):
        if isinstance(shape, int):
            shape = (shape,)
        self.shape = tuple(shape)

    @property
    def size(self) -> int:
        return _numel(self.shape)

    @property
    def flat_size(self) -> int:
        return self.size * self.flat_dof

    # ---- density -----------------------------------------------------

    def logdensity(self, x):
        """Log-density summed over all elements; ``-inf`` off-support."""
        x = jnp.asarray(x)
        inside = self._in_support(x)
        safe = jnp.where(inside, x, self._support_point())
        lp = jnp.where(inside, self._logpdf(safe), -jnp.inf)
        return jnp.sum(lp)

    def sample(self, key):
        return self._sample(key, self.shape)

    # ---- unconstrained space ----------------------------------------

    def from_flat(self, y):
        """Map unconstrained ``y`` onto the support.

        Returns
        -------
        x : jax.Array
            Value with shape ``self.shape``.
        logjac : jax.Array
            Scalar log |dx/dy| summed over elements.
        """
        raise NotImplementedError

    def to_flat(self, x):
        raise NotImplementedError

    # ---- unit cube ---------------------------------------------------

    def from_cube(self, u):
        """Inverse CDF, elementwise."""
        raise NotImplementedError

    def to_cube(self, x):
        """CDF, elementwise."""
        raise NotImplementedError

    # ---- elementwise hooks -------------------------------------------

    def _in_support(self, x):
        return jnp.isfinite(x)

    def _support_point(self):
        return 0.0

    def _logpdf(self, x):
        raise NotImplementedError

    def _sample(self, key, shape):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(shape={self.shape})"


class Normal(Distribution):
    """Normal prior ``N(mean, std**2)``."""

    def __init__(self, mean=0.0, std=1.0, shape=()):
        super().__init__(shape)
        self.mean = mean
        self.std = std

    def _logpdf(self, x):
        z = (x - self.mean) / self.std
        return -0.5 * z ** 2 - jnp.log(self.std) - 0.5 * jnp.log(2.0 * jnp.pi)

    def _sample(self, key, shape):
        return self.mean + self.std * random.normal(key, shape)

    def from_flat(self, y):
        return jnp.reshape(y, self.shape), jnp.zeros(())

    def to_flat(self, x):
        return jnp.reshape(jnp.asarray(x), (-1,))

    def from_cube(self, u):
        return self.mean + self.std * ndtri(u)

    def to_cube(self, x):
        return ndtr((x - self.mean) / self.std)


class LogNormal(Distribution):
    """Log-normal prior: ``log(x) ~ N(mu, sigma**2)``."""

    def __init__(self, mu=0.0, sigma=1.0, shape=()):
        super().__init__(shape)
        self.mu = mu
        self.sigma = sigma

    def _in_support(self, x):
        return jnp.isfinite(x) & (x > 0.0)

    def _support_point(self):
        return 1.0

    def _logpdf(self, x):
        lx = jnp.log(x)
        z = (lx - self.mu) / self.sigma
        return (
            -0.5 * z ** 2 - lx - jnp.log(self.sigma)
            - 0.5 * jnp.log(2.0 * jnp.pi)
        )

    def _sample(self, key, shape):
        return jnp.exp(self.mu + self.sigma * random.normal(key, shape))

    def from_flat(self, y):
        y = jnp.reshape(y, self.shape)
        return jnp.exp(y), jnp.sum(y)

    def to_flat(self, x):
        return jnp.reshape(jnp.log(x), (-1,))

    def from_cube(self, u):
        return jnp.exp(self.mu + self.sigma * ndtri(u))

    def to_cube(self, x):
        return ndtr((jnp.log(x) - self.mu) / self.sigma)


class Exponential(Distribution):
    """Exponential prior with mean ``scale`` on ``[0, inf)``."""

    def __init__(self, scale=1.0, shape=()):
        super().__init__(shape)
        self.scale = scale

    def _in_support(self, x):
        return jnp.isfinite(x) & (x >= 0.0)

    def _logpdf(self, x):
        return -jnp.log(self.scale) - x / self.scale

    def _sample(self, key, shape):
        return self.scale * random.exponential(key, shape)

    def from_flat(self, y):
        y = jnp.reshape(y, self.shape)
        return jnp.exp(y), jnp.sum(y)

    def to_flat(self, x):
        return jnp.reshape(jnp.log(x), (-1,))

    def from_cube(self, u):
        return -self.scale * jnp.log1p(-u)

    def to_cube(self, x):
        return -jnp.expm1(-x / self.scale)


class Uniform(Distribution):
    """Uniform prior on ``[a_min, a_max]``.

    The unconstrained map is a scaled logistic,
    ``x = a_min + (a_max - a_min) * sigmoid(y)``.
    """

    def __init__(self, a_min=0.0, a_max=1.0, shape=()):
        super().__init__(shape)
        if not a_max > a_min:
            raise ValueError(
                f"Uniform prior needs a_max > a_min, got [{a_min}, {a_max}]"
            )
        self.a_min = a_min
        self.a_max = a_max

    @property
    def width(self):
        return self.a_max - self.a_min

    def _in_support(self, x):
        return (x >= self.a_min) & (x <= self.a_max)

    def _support_point(self):
        return 0.5 * (self.a_min + self.a_max)

    def _logpdf(self, x):
        return -jnp.log(self.width) * jnp.ones_like(x)

    def _sample(self, key, shape):
        return random.uniform(key, shape, minval=self.a_min, maxval=self.a_max)

    def from_flat(self, y):
        y = jnp.reshape(y, self.shape)
        x = self.a_min + self.width * jax.nn.sigmoid(y)
        logjac = jnp.sum(
            jnp.log(self.width) + jax.nn.log_sigmoid(y) + jax.nn.log_sigmoid(-y)
        )
        return x, logjac

    def to_flat(self, x):
        return jnp.reshape(logit((x - self.a_min) / self.width), (-1,))

    def from_cube(self, u):
        return self.a_min + self.width * u

    def to_cube(self, x):
        return (x - self.a_min) / self.width


class UniformAngle(Distribution):
    """Uniform prior on the circle, values in ``[-pi, pi]``.

    In unconstrained space every angle is lifted to a point ``(y1, y2)``
    in the plane with ``theta = atan2(y2, y1)``.  The radial coordinate
    carries a Rayleigh density, which contributes ``-(y1**2 + y2**2) / 2``
    to the log-Jacobian and keeps the lifted density normalised.  The
    lift removes the wrap-around discontinuity at ``+-pi``.
    """

    flat_dof = 2

    def _in_support(self, x):
        return (x >= -jnp.pi) & (x <= jnp.pi)

    def _logpdf(self, x):
        return -jnp.log(2.0 * jnp.pi) * jnp.ones_like(x)

    def _sample(self, key, shape):
        return random.uniform(key, shape, minval=-jnp.pi, maxval=jnp.pi)

    def from_flat(self, y):
        y = jnp.reshape(y, self.shape + (2,))
        theta = jnp.arctan2(y[..., 1], y[..., 0])
        logjac = -0.5 * jnp.sum(y ** 2)
        return theta, logjac

    def to_flat(self, x):
        x = jnp.asarray(x)
        return jnp.reshape(jnp.stack([jnp.cos(x), jnp.sin(x)], axis=-1), (-1,))

    def from_cube(self, u):
        return -jnp.pi + 2.0 * jnp.pi * u

    def to_cube(self, x):
        return (x + jnp.pi) / (2.0 * jnp.pi)


# ===================================================================
#  Product prior over named parameters
# ===================================================================

def _is_component(node) -> bool:
    return isinstance(node, Distribution)


class NamedPrior:
    """Independent product of component priors over a dict of parameters.

    Parameters
    ----------
    components : mapping
        ``{name: Distribution}``; values may themselves be mappings, which
        yields nested parameter dicts.  Leaves are visited in JAX pytree
        order (sorted keys), which fixes the layout of every flattened
        representation built from this prior.

    Examples
    --------
    >>> prior = NamedPrior({
    ...     "flux": Uniform(0.1, 2.0),
    ...     "gains": {"lgamp": Normal(0.0, 0.1, shape=(12,)),
    ...               "gphase": UniformAngle(shape=(12,))},
    ... })
    >>> theta = prior.sample(jax.random.PRNGKey(0))
    """

    def __init__(self, components: Mapping[str, Any] | None = None, **kwargs):
        components = dict(components or {}, **kwargs)
        if not components:
            raise ValueError("NamedPrior needs at least one component")
        leaves, treedef = jax.tree_util.tree_flatten(
            components, is_leaf=_is_component,
        )
        for leaf in leaves:
            if not _is_component(leaf):
                raise TypeError(
                    f"Prior components must be Distribution instances, got {leaf!r}"
                )
        self.components = components
        self._leaves = tuple(leaves)
        self._treedef = treedef

    @property
    def leaves(self) -> tuple:
        return self._leaves

    @property
    def treedef(self):
        return self._treedef

    def names(self) -> list[str]:
        """Slash-joined names of the components in leaf order."""
        paths = jax.tree_util.tree_flatten_with_path(
            self.components, is_leaf=_is_component,
        )[0]
        return [
            "/".join(str(getattr(k, "key", k)) for k in path)
            for path, _ in paths
        ]

    def unflatten(self, values):
        """Arrange per-component values into the named parameter dict."""
        return jax.tree_util.tree_unflatten(self._treedef, list(values))

    def split(self, theta):
        """Per-component values of ``theta`` in leaf order."""
        return self._treedef.flatten_up_to(theta)

    def logdensity(self, theta):
        values = self.split(theta)
        return sum(d.logdensity(v) for d, v in zip(self._leaves, values))

    def sample(self, key):
        keys = random.split(key, len(self._leaves))
        return self.unflatten(d.sample(k) for d, k in zip(self._leaves, keys))

    def asflat(self):
        from .transforms import FlatTransform
        return FlatTransform(self)

    def ascube(self):
        from .transforms import CubeTransform
        return CubeTransform(self)

    def __repr__(self):
        inner = ", ".join(
            f"{n}={d!r}" for n, d in zip(self.names(), self._leaves)
        )
        return f"NamedPrior({inner})"
