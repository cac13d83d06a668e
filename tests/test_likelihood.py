"""
Unit tests for visibility models, data products and RadioLikelihood.
"""

import sys
import os
import numpy as np
import pytest

# Ensure the package root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import jax
jax.config.update("jax_enable_x64", True)
import jax.numpy as jnp
from scipy.special import i0e


@pytest.fixture
def observation():
    """Two scans over a closed triangle of stations."""
    from vlbinfer.observation import ScanTable
    bls = [("AA", "AP"), ("AP", "SM"), ("AA", "SM")] * 2
    table = ScanTable.from_measurements(
        [0.0, 0.0, 0.0, 1.0, 1.0, 1.0], [b[0] for b in bls], [b[1] for b in bls],
    )
    u = np.array([1.0, 0.5, 1.5, 1.1, 0.4, 1.5]) * 1e9
    v = np.array([0.2, -0.6, -0.4, 0.3, -0.5, -0.2]) * 1e9
    return table, u, v


def _sky(theta, meta):
    from vlbinfer.skymodels import Gaussian
    return Gaussian(theta["flux"], theta["fwhm"], x0=meta["x0"])


# ===================================================================
#  Visibility models
# ===================================================================

class TestSkyModels:
    """Test the analytic visibility models."""

    def test_gaussian_zero_spacing_flux(self):
        from vlbinfer.skymodels import Gaussian
        vis = Gaussian(2.5, 1e-10).visibilities(np.zeros(3), np.zeros(3))
        np.testing.assert_allclose(np.asarray(vis), 2.5)

    def test_gaussian_half_width(self):
        """Visibility amplitude drops to 1/2 at |u| = 2 ln2 / (pi fwhm)."""
        from vlbinfer.skymodels import Gaussian
        fwhm = 2e-10
        u = 2.0 * np.log(2.0) / (np.pi * fwhm)
        amp = Gaussian(1.0, fwhm).amplitudes(np.array([u]), np.array([0.0]))
        np.testing.assert_allclose(np.asarray(amp), [0.5], rtol=1e-10)

    def test_point_shift_phase(self):
        from vlbinfer.skymodels import Point
        vis = Point(1.0, x0=0.25).visibilities(np.array([1.0]), np.array([0.0]))
        np.testing.assert_allclose(np.asarray(vis), [-1j], atol=1e-12)

    def test_sum_model(self):
        from vlbinfer.skymodels import Gaussian, Point, AddModel
        m = Gaussian(1.0, 1e-10) + Point(0.5)
        assert isinstance(m, AddModel)
        np.testing.assert_allclose(
            np.asarray(m.visibilities(np.zeros(1), np.zeros(1))), [1.5],
        )

    def test_centered_symmetric_model_has_zero_closure_phase(self):
        from vlbinfer.skymodels import Gaussian
        cp = Gaussian(1.0, 3e-10).closure_phases(1e9, 0.0, -0.5e9, 0.5e9, -0.5e9, -0.5e9)
        np.testing.assert_allclose(float(cp), 0.0, atol=1e-12)

    def test_base_model_is_abstract(self):
        from vlbinfer.skymodels import VisibilityModel
        with pytest.raises(NotImplementedError):
            VisibilityModel().visibilities(np.zeros(1), np.zeros(1))


# ===================================================================
#  Data products
# ===================================================================

class TestDataProducts:
    """Log-likelihood values of the individual data products."""

    def test_complex_visibilities_loglikelihood(self):
        from vlbinfer.likelihood import ComplexVisibilities
        from vlbinfer.skymodels import Point
        data = ComplexVisibilities(
            [0.0, 1.0], [0.0, 0.0], [1.0 + 0.1j, 0.9 + 0j], noise=0.1,
        )
        # residuals: re (0, -0.1), im (0.1, 0) -> chi^2 = 2
        expected = -0.5 * 2.0 - 0.5 * 4 * np.log(2 * np.pi * 0.01)
        np.testing.assert_allclose(
            float(data.loglikelihood(Point(1.0))), expected, rtol=1e-10,
        )
        assert len(data) == 2

    def test_amplitudes_fractional_noise(self):
        from vlbinfer.likelihood import VisibilityAmplitudes
        data = VisibilityAmplitudes(
            [0.0, 1.0], [0.0, 0.0], [2.0, 4.0], noise=0.3, fractional_noise=0.1,
        )
        np.testing.assert_allclose(data.sigma, np.sqrt(0.09 + np.array([0.04, 0.16])))

    def test_fractional_noise_default_from_config(self):
        from vlbinfer import config
        from vlbinfer.likelihood import VisibilityAmplitudes
        original = config.FRACTIONAL_NOISE
        config.FRACTIONAL_NOISE = 0.5
        try:
            data = VisibilityAmplitudes([0.0], [0.0], [2.0], noise=0.0)
        finally:
            config.FRACTIONAL_NOISE = original
        np.testing.assert_allclose(data.sigma, [1.0])

    def test_amplitudes_loglikelihood(self):
        from vlbinfer.likelihood import VisibilityAmplitudes
        from vlbinfer.skymodels import Point
        data = VisibilityAmplitudes([0.0, 3.0], [0.0, 0.0], [1.2, 0.8], noise=[0.2, 0.4])
        resid = np.array([0.2, -0.2]) / np.array([0.2, 0.4])
        expected = -0.5 * np.sum(resid ** 2) - 0.5 * np.sum(
            np.log(2 * np.pi * np.array([0.04, 0.16]))
        )
        np.testing.assert_allclose(
            float(data.loglikelihood(Point(1.0))), expected, rtol=1e-10,
        )

    def test_logclosure_amplitudes_loglikelihood(self):
        from vlbinfer.likelihood import LogClosureAmplitudes
        from vlbinfer.skymodels import Point
        z = np.zeros(1)
        # A point source has log closure amplitude 0 on every quadrangle
        data = LogClosureAmplitudes(z, z, z, z, z, z, z, z, [0.05], noise=0.05)
        expected = -0.5 - 0.5 * np.log(2 * np.pi * 0.0025)
        np.testing.assert_allclose(
            float(data.loglikelihood(Point(2.0))), expected, rtol=1e-10,
        )

    def test_closure_phases_von_mises(self):
        from vlbinfer.likelihood import ClosurePhases
        from vlbinfer.skymodels import Point
        z = np.zeros(2)
        phase = np.array([0.1, -0.3])
        sigma = np.array([0.1, 0.2])
        data = ClosurePhases(z, z, z, z, z, z, phase, noise=sigma)
        kappa = 1.0 / sigma ** 2
        expected = np.sum(
            -np.log(2 * np.pi) - np.log(i0e(kappa)) + kappa * (np.cos(phase) - 1.0)
        )
        np.testing.assert_allclose(
            float(data.loglikelihood(Point(1.0))), expected, rtol=1e-10,
        )

    def test_closure_phases_periodic(self):
        from vlbinfer.likelihood import ClosurePhases
        from vlbinfer.skymodels import Point
        z = np.zeros(1)
        a = ClosurePhases(z, z, z, z, z, z, [0.2], noise=0.1)
        b = ClosurePhases(z, z, z, z, z, z, [0.2 + 2 * np.pi], noise=0.1)
        np.testing.assert_allclose(
            float(a.loglikelihood(Point(1.0))), float(b.loglikelihood(Point(1.0))),
        )

    def test_closure_phase_draws_follow_von_mises(self):
        """Mean resultant length of draws is I1(kappa) / I0(kappa)."""
        from scipy.special import i1e
        from vlbinfer.likelihood import ClosurePhases
        from vlbinfer.skymodels import Point
        n = 20000
        z = np.zeros(n)
        sigma = 1.5
        cp = ClosurePhases(z, z, z, z, z, z, np.zeros(n), noise=sigma)
        sim = cp.simulate(Point(1.0), jax.random.PRNGKey(4))
        kappa = 1.0 / sigma ** 2
        resultant = np.abs(np.mean(np.exp(1j * sim.phase)))
        # A wrapped normal would give exp(-sigma**2 / 2) ~ 0.32 here
        np.testing.assert_allclose(resultant, i1e(kappa) / i0e(kappa), atol=0.02)

    def test_simulate_keeps_layout(self):
        from vlbinfer.likelihood import ComplexVisibilities, ClosurePhases
        from vlbinfer.skymodels import Gaussian
        u = np.linspace(0.0, 1e9, 5)
        data = ComplexVisibilities(u, u, np.ones(5), noise=0.01, fractional_noise=0.1)
        sim = data.simulate(Gaussian(1.0, 1e-10), jax.random.PRNGKey(0))
        assert isinstance(sim, ComplexVisibilities)
        assert sim.vis.shape == (5,)
        assert sim.fractional_noise == 0.0
        np.testing.assert_allclose(sim.sigma, data.sigma)

        z = np.zeros(5)
        cp = ClosurePhases(z, z, z, z, z, z, np.full(5, 3.0), noise=0.5)
        sim = cp.simulate(Gaussian(1.0, 1e-10), jax.random.PRNGKey(1))
        assert np.all(np.abs(sim.phase) <= np.pi)


# ===================================================================
#  RadioLikelihood
# ===================================================================

class TestRadioLikelihood:
    """Test the combined likelihood with and without gains."""

    @pytest.fixture
    def theta(self):
        return {"flux": jnp.asarray(1.1), "fwhm": jnp.asarray(2e-10)}

    def test_requires_dataproducts(self):
        from vlbinfer.likelihood import RadioLikelihood
        with pytest.raises(ValueError):
            RadioLikelihood(_sky)

    def test_instrument_requires_cache(self, observation):
        from vlbinfer.likelihood import RadioLikelihood, VisibilityAmplitudes
        _, u, v = observation
        amps = VisibilityAmplitudes(u, v, np.ones(6), 0.1)
        with pytest.raises(ValueError, match="GainCache"):
            RadioLikelihood(_sky, amps, skymeta={"x0": 0.0},
                            instrument=lambda th, meta: jnp.ones(6))

    def test_sum_of_products(self, observation, theta):
        from vlbinfer.likelihood import (
            RadioLikelihood, VisibilityAmplitudes, ClosurePhases,
        )
        _, u, v = observation
        amps = VisibilityAmplitudes(u, v, np.full(6, 0.7), 0.1)
        cphase = ClosurePhases(u[:1], v[:1], u[1:2], v[1:2], -u[2:3], -v[2:3],
                               [0.1], 0.2)
        lk = RadioLikelihood(_sky, amps, cphase, skymeta={"x0": 1e-10})
        model = lk.skymodel(theta)
        expected = float(amps.loglikelihood(model)) + float(cphase.loglikelihood(model))
        np.testing.assert_allclose(float(lk(theta)), expected)
        assert lk.dataproducts() == (amps, cphase)
        assert lk.instrumentmodel(theta) is None

    def test_gain_corrupted_model(self, observation, theta):
        from vlbinfer.instrument import GainCache, GainModel
        from vlbinfer.likelihood import RadioLikelihood, ComplexVisibilities
        table, u, v = observation
        cache = GainCache.from_scantable(table, segmentation="scan")

        def instrument(th, meta):
            return th["gamp"] * jnp.exp(1j * th["gphase"])

        vis = ComplexVisibilities(u, v, np.ones(6), 0.05)
        lk = RadioLikelihood(
            _sky, vis, skymeta={"x0": 0.0},
            instrument=instrument, gaincache=cache,
        )
        theta = dict(theta, gamp=jnp.full(6, 1.2), gphase=jnp.linspace(0, 1, 6))
        model = lk.vlbimodel(theta)
        assert isinstance(model, GainModel)
        np.testing.assert_allclose(
            np.abs(np.asarray(model.visibilities(u, v))),
            1.44 * np.abs(np.asarray(lk.skymodel(theta).visibilities(u, v))),
        )
        assert np.isfinite(float(lk(theta)))

        sim = lk.simulate(theta, jax.random.PRNGKey(2))
        assert len(sim) == 1
        assert sim[0].vis.shape == (6,)

    def test_gradient_through_gains(self, observation, theta):
        from vlbinfer.instrument import GainCache
        from vlbinfer.likelihood import RadioLikelihood, ComplexVisibilities
        table, u, v = observation
        cache = GainCache.from_scantable(table, segmentation="track")
        vis = ComplexVisibilities(u, v, np.full(6, 0.9 + 0.1j), 0.05)
        lk = RadioLikelihood(
            _sky, vis, skymeta={"x0": 0.0},
            instrument=lambda th, meta: jnp.exp(th["lg"] + 1j * th["ph"]),
            gaincache=cache,
        )

        def f(lg):
            return lk(dict(theta, lg=lg, ph=jnp.zeros(3)))

        lg = jnp.array([0.1, -0.05, 0.02])
        grad = jax.grad(f)(lg)
        eps = 1e-6
        for i in range(3):
            d = jnp.zeros(3).at[i].set(eps)
            fd = (float(f(lg + d)) - float(f(lg - d))) / (2 * eps)
            np.testing.assert_allclose(float(grad[i]), fd, rtol=1e-5, atol=1e-4)
