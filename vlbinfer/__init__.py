"""
vlbinfer: Bayesian VLBI Inference
==================================

Package for Bayesian modelling of very-long-baseline interferometry
data.  Provides named-parameter priors, flat / hypercube / raw
reparametrizations for samplers, analytic visibility models, radio data
products with proper log-likelihoods, and a station-gain instrument
model built on sparse design matrices.

Quick start
-----------
>>> from vlbinfer import (NamedPrior, Uniform, Gaussian, ClosurePhases,
...                       RadioLikelihood, Posterior, asflat, config)
>>> prior = NamedPrior(flux=Uniform(0.1, 2.0), fwhm=Uniform(1e-11, 1e-9))
>>> lklhd = RadioLikelihood(lambda th, _: Gaussian(th["flux"], th["fwhm"]), cphase)
>>> tpost = asflat(Posterior(lklhd, prior))
>>> tpost.logdensity(tpost.prior_sample(config.DEFAULT_SEED))
"""

from .priors import (
    NamedPrior, Normal, LogNormal, Uniform, Exponential, UniformAngle,
)
from .transforms import FlatTransform, CubeTransform, RawFlatTransform
from .posterior import (
    Posterior, TransformedPosterior, asflat, ascube, flatten, dimension,
)
from .observation import Scan, ScanTable
from .instrument import (
    DesignMatrix, GainCache, GainModel, CalTable, corrupt, caltable,
)
from .skymodels import VisibilityModel, Gaussian, Point, AddModel
from .likelihood import (
    ComplexVisibilities, VisibilityAmplitudes, ClosurePhases,
    LogClosureAmplitudes, RadioLikelihood,
)
from . import config
from . import registry
from . import plotting

__all__ = [
    "NamedPrior", "Normal", "LogNormal", "Uniform", "Exponential", "UniformAngle",
    "FlatTransform", "CubeTransform", "RawFlatTransform",
    "Posterior", "TransformedPosterior", "asflat", "ascube", "flatten", "dimension",
    "Scan", "ScanTable",
    "DesignMatrix", "GainCache", "GainModel", "CalTable", "corrupt", "caltable",
    "VisibilityModel", "Gaussian", "Point", "AddModel",
    "ComplexVisibilities", "VisibilityAmplitudes", "ClosurePhases",
    "LogClosureAmplitudes", "RadioLikelihood",
    "config",
    "registry",
    "plotting",
]
