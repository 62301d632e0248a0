import jax

# The thickness-averaged sensitivity integrals subtract nearly equal
# antiderivative values; single precision loses most of the result.
jax.config.update("jax_enable_x64", True)

from .types import IridescenceParams, MicrofacetFootprint, BSDFSample
from .iridescence import reflectance, mean_and_variance
from .glint_bsdf import GlintBSDF, GlintConfig, sample_glint_reflectance

__all__ = [
    "IridescenceParams", "MicrofacetFootprint", "BSDFSample",
    "reflectance", "mean_and_variance",
    "GlintBSDF", "GlintConfig", "sample_glint_reflectance",
]
