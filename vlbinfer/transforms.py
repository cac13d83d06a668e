"""
Reparametrizations between a sampler's working space and named
parameters.

Three variants share one interface (``transform``, ``inverse``,
``transform_and_logjac``, ``dimension``):

- :class:`FlatTransform` maps ``R^n`` onto the prior support through the
  per-component bijections of :mod:`vlbinfer.priors` and accumulates
  their log-Jacobians.
- :class:`CubeTransform` maps the open unit hypercube onto the support
  with inverse CDFs.  Its log-Jacobian is minus the prior log-density.
- :class:`RawFlatTransform` only reshapes a flat vector into the
  parameter dict and back (log-Jacobian ``0``).

All maps are pure JAX functions and can be differentiated or vmapped.

Classes
-------
Transform
    Shared interface.
FlatTransform, CubeTransform, RawFlatTransform
    The three variants.
"""

from __future__ import annotations

import numpy as np
import jax.numpy as jnp

from jax.flatten_util import ravel_pytree

from .priors import NamedPrior


class Transform:
    """Invertible map between a flat working vector and parameters."""

    def transform_and_logjac(self, x):
        raise NotImplementedError

    def transform(self, x):
        return self.transform_and_logjac(x)[0]

    def inverse(self, theta):
        raise NotImplementedError

    def dimension(self) -> int:
        raise NotImplementedError

    def _check_vector(self, x):
        x = jnp.asarray(x)
        if x.shape != (self.dimension(),):
            raise ValueError(
                f"{type(self).__name__} expects a vector of shape "
                f"({self.dimension()},), got {x.shape}"
            )
        return x

    def __repr__(self):
        return f"{type(self).__name__}(dimension={self.dimension()})"


class _PriorTransform(Transform):
    """Leafwise transform driven by the components of a NamedPrior."""

    def __init__(self, prior: NamedPrior):
        self.prior = prior
        sizes = [self._leaf_size(d) for d in prior.leaves]
        self._offsets = tuple(int(o) for o in np.cumsum([0] + sizes))

    def _leaf_size(self, dist) -> int:
        raise NotImplementedError

    def _slices(self, x):
        for d, lo, hi in zip(self.prior.leaves, self._offsets[:-1], self._offsets[1:]):
            yield d, x[lo:hi]

    def dimension(self) -> int:
        return self._offsets[-1]


class FlatTransform(_PriorTransform):
    """Unconstrained reparametrization ``R^n -> support``.

    ``n`` counts lifted coordinates, so a prior with angular components
    has a larger working dimension than parameter count.
    """

    def _leaf_size(self, dist) -> int:
        return dist.flat_size

    def transform_and_logjac(self, x):
        x = self._check_vector(x)
        values = []
        logjac = jnp.zeros(())
        for dist, chunk in self._slices(x):
            value, lj = dist.from_flat(chunk)
            values.append(value)
            logjac = logjac + lj
        return self.prior.unflatten(values), logjac

    def inverse(self, theta):
        values = self.prior.split(theta)
        return jnp.concatenate([
            jnp.atleast_1d(d.to_flat(v)) for d, v in zip(self.prior.leaves, values)
        ])


class CubeTransform(_PriorTransform):
    """Unit-hypercube reparametrization via inverse CDFs.

    Points on or outside the cube boundary are outside the domain; use
    :meth:`in_domain` before calling :meth:`transform` on untrusted input.
    """

    def _leaf_size(self, dist) -> int:
        return dist.size

    @staticmethod
    def inside(u):
        """Traceable check that every component lies in the open cube."""
        u = jnp.asarray(u)
        return jnp.all((u > 0.0) & (u < 1.0))

    @staticmethod
    def in_domain(u) -> bool:
        return bool(CubeTransform.inside(u))

    def transform(self, u):
        u = self._check_vector(u)
        return self.prior.unflatten(
            d.from_cube(jnp.reshape(chunk, d.shape)) for d, chunk in self._slices(u)
        )

    def transform_and_logjac(self, u):
        # The inverse-CDF map pushes the uniform measure onto the prior,
        # so |dtheta/du| = 1 / prior(theta).
        theta = self.transform(u)
        return theta, -self.prior.logdensity(theta)

    def inverse(self, theta):
        values = self.prior.split(theta)
        return jnp.concatenate([
            jnp.reshape(d.to_cube(v), (-1,)) for d, v in zip(self.prior.leaves, values)
        ])


class RawFlatTransform(Transform):
    """Structural flattening with no change of support.

    Parameters
    ----------
    example : pytree
        A representative parameter value (usually one prior draw) that
        fixes the layout of the flat vector.
    """

    def __init__(self, example):
        flat, self._unravel = ravel_pytree(example)
        self._dimension = int(flat.size)

    def dimension(self) -> int:
        return self._dimension

    def transform(self, x):
        return self._unravel(self._check_vector(x))

    def transform_and_logjac(self, x):
        return self.transform(x), jnp.zeros(())

    def inverse(self, theta):
        return ravel_pytree(theta)[0]
