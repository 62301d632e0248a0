import jax
import jax.numpy as jnp
import numpy as np
from flax import struct
from typing import Any, Optional, Tuple

from .ior import conductor_spectrum, lookup_ior
from .iridescence import reflectance, mean_and_variance, supports_antialiasing, supports_thickness_statistics
from .microfacet import MicrofacetDistribution
from .quadrature import IntegrationCache, build_hemisphere_cache, eval_footprint
from .spectral import (
    clamp_negative, cos_theta, dot, normalize, reflect, sample_uniform_cone,
    xyz_to_rgb, XYZ_TO_CIE_RGB_MATRIX,
)
from .spherical import SphericalConicSection
from .textures import Texture, as_texture, to_spectrum
from .types import (
    ALL_COMPONENTS, GLOSSY_REFLECTION, RGB_WAVELENGTHS_NM,
    BSDFSample, IridescenceParams, MicrofacetFootprint, Spectrum, Vector3,
)


@struct.dataclass
class GlintConfig:
    """Construction-time parameters of a glittery iridescent material."""
    # Evaluation modes
    spectral_antialiasing: bool = struct.field(pytree_node=False, default=True)
    use_gaussian_fit: bool = struct.field(pytree_node=False, default=True)

    # Microfacet distribution
    distribution: str = struct.field(pytree_node=False, default="beckmann")
    alpha_u: float = 0.1
    alpha_v: Optional[float] = None  # None: isotropic
    sample_visible: bool = struct.field(pytree_node=False, default=False)

    # Discrete facets
    total_facets: float = 1_000_000
    query_radius_deg: float = 5.0
    sample_count: int = struct.field(pytree_node=False, default=16)

    # Optics: substrate conductor, incident medium and film
    material: str = struct.field(pytree_node=False, default="Cu")
    eta: Optional[Any] = None  # Overrides the conductor's eta
    k: Optional[Any] = None    # Texture or value; defaults to the conductor's k
    ext_ior: Any = "air"
    film_ior: Any = "air"

    # Textures (float, array or Texture)
    height: Any = 400.0        # Film thickness (nm)
    height_range: Any = 20.0   # Thickness varies in [height - range, height + range]
    specular_reflectance: Any = 1.0

    # None: RGB mode wavelengths
    wavelengths: Optional[Any] = None

    # Sampling and integration
    sampling_roughness_scale: float = 2.0
    max_depth: int = struct.field(pytree_node=False, default=14)
    tolerance_abs: float = 1e-5
    tolerance_rel: float = 1e-5


@jax.jit
def sample_glint_reflectance(count, mean: Spectrum, variance: Spectrum, rng_key: jax.random.PRNGKey) -> Spectrum:
    """Average colour of ``count`` facets drawn around ``mean`` (XYZ), returned in CIE RGB.

    Each channel is an independent Gaussian with variance ``variance / count``.
    """
    sigma = jnp.sqrt(jnp.maximum(variance, 0.0) / jnp.maximum(count, 1.0))
    xyz = mean + sigma * jax.random.normal(rng_key, jnp.shape(mean))
    return clamp_negative(xyz_to_rgb(xyz, XYZ_TO_CIE_RGB_MATRIX))


@jax.jit
def _eval_smooth(wi, wo, distribution: MicrofacetDistribution, params: IridescenceParams, spec: Spectrum) -> Spectrum:
    H = normalize(wi + wo)
    F = reflectance(dot(wi, H), params) * spec
    D = distribution.eval(H)
    G = distribution.G(wi, wo, H)
    return F * D * G / (4.0 * cos_theta(wi))


@jax.jit
def _eval_discrete(wi, wo, density, count, pixel_area, cone_solid_angle,
                   distribution: MicrofacetDistribution, params: IridescenceParams, spec: Spectrum,
                   min_height, max_height, rng_key) -> Spectrum:
    H = normalize(wi + wo)
    cos_ih = dot(wi, H)
    if supports_thickness_statistics(params):
        mean, variance = mean_and_variance(cos_ih, params, min_height, max_height)
        F = sample_glint_reflectance(count, mean, variance, rng_key)
    else:
        # No closed-form statistics: every facet shows the reflectance at the nominal height
        F = reflectance(cos_ih, params)
    G = distribution.G(wi, wo, H)
    return cos_ih * F * spec * density * G / (pixel_area * cone_solid_angle * cos_theta(H) * cos_theta(wi))


@jax.jit
def _pdf(wi, wo, sampling_distribution: MicrofacetDistribution):
    H = normalize(wi + wo)
    value = sampling_distribution.pdf(wi, H) / (4.0 * jnp.abs(dot(wo, H)))
    valid = (cos_theta(wi) > 0.0) & (cos_theta(wo) > 0.0)
    return jnp.where(valid, value, 0.0)


class GlintBSDF:
    """Glittery thin-film coated conductor.

    Without a pixel footprint the material is a smooth iridescent microfacet
    BSDF. With a footprint, the footprint's facets whose normals reflect
    ``wi`` into a small cone around ``wo`` are counted from the precomputed
    integration tree, and their average colour is drawn from the thin-film
    mean and variance over the thickness range.
    """

    def __init__(self, config: GlintConfig = GlintConfig()):
        if config.total_facets < 0:
            raise ValueError(f"total_facets must be non-negative, got {config.total_facets}")
        if not 0.0 < config.query_radius_deg < 90.0:
            raise ValueError(f"query_radius_deg must be in (0, 90), got {config.query_radius_deg}")
        if config.sampling_roughness_scale <= 0.0:
            raise ValueError(f"sampling_roughness_scale must be positive, got {config.sampling_roughness_scale}")

        self.config = config
        self.wavelengths = RGB_WAVELENGTHS_NM if config.wavelengths is None else jnp.asarray(config.wavelengths, dtype=float)
        self.n_channels = self.wavelengths.shape[-1]

        self.distribution = MicrofacetDistribution.create(
            config.distribution, config.alpha_u, config.alpha_v, config.sample_visible)
        # Sampling uses a wider lobe than the one being rendered
        self.sampling_distribution = self.distribution.scaled(config.sampling_roughness_scale)

        self.query_radius = float(np.radians(config.query_radius_deg))
        self.cone_solid_angle = 2.0 * np.pi * (1.0 - np.cos(self.query_radius))

        # Interfaces: incident medium (1), film (2), conductor substrate (3)
        eta3, k3 = conductor_spectrum(config.material, self.wavelengths)
        if config.eta is not None:
            eta3 = jnp.broadcast_to(jnp.asarray(config.eta, dtype=float), self.wavelengths.shape)
        self.eta1 = jnp.full(self.wavelengths.shape, lookup_ior(config.ext_ior))
        self.eta2 = jnp.full(self.wavelengths.shape, lookup_ior(config.film_ior))
        self.eta3 = eta3

        self.k: Texture = as_texture(k3 if config.k is None else config.k, self.n_channels)
        self.height: Texture = as_texture(config.height)
        self.height_range: Texture = as_texture(config.height_range)
        self.specular_reflectance: Texture = as_texture(config.specular_reflectance, self.n_channels)

        nominal = self.shading_params(jnp.zeros(2))[0]
        if config.spectral_antialiasing and not supports_antialiasing(nominal):
            print(f"Warning: spectral antialiasing needs 3 channels, got {self.n_channels}; using Airy summation.")
        if not supports_thickness_statistics(nominal):
            print("Warning: thickness mean/variance need spectral antialiasing with the Gaussian fit; "
                  "glints will use the reflectance at the nominal height.")

        self.cache: IntegrationCache = build_hemisphere_cache(
            self.distribution, config.tolerance_abs, config.tolerance_rel, config.max_depth)
        print(f"Integration table entries: {len(self.cache)}")
        print(f"Integration tree depth: {self.cache.max_depth}")

    # --- Per shading point state ---

    def shading_params(self, uv) -> Tuple[IridescenceParams, jnp.ndarray, jnp.ndarray, Spectrum]:
        """Texture lookups at ``uv``: optics, thickness bounds and specular reflectance."""
        uv = jnp.asarray(uv, dtype=float)
        h = self.height.eval(uv)[..., 0]
        hr = self.height_range.eval(uv)[..., 0]
        params = IridescenceParams(
            height=jnp.broadcast_to(h, self.wavelengths.shape),
            eta1=self.eta1,
            eta2=self.eta2,
            eta3=self.eta3,
            kappa3=to_spectrum(self.k.eval(uv), self.n_channels),
            wavelengths=self.wavelengths,
            spectral_antialiasing=self.config.spectral_antialiasing,
            use_gaussian_fit=self.config.use_gaussian_fit,
        )
        spec = to_spectrum(self.specular_reflectance.eval(uv), self.n_channels)
        return params, h - hr, h + hr, spec

    def footprint_density(self, wi: Vector3, wo: Vector3, footprint: MicrofacetFootprint) -> Tuple[float, float]:
        """(fraction of all facets visible in the footprint and cone, their integer count)."""
        conic = SphericalConicSection(np.asarray(wi, dtype=float), np.asarray(wo, dtype=float), self.query_radius)
        density = eval_footprint(self.distribution, footprint, conic, self.cache, self.config.sample_count)
        return density, float(np.floor(density * self.config.total_facets))

    @staticmethod
    def component_enabled(component: int = -1, type_mask: int = ALL_COMPONENTS) -> bool:
        return component in (-1, 0) and bool(type_mask & GLOSSY_REFLECTION)

    # --- BSDF interface ---

    def eval(self, wi: Vector3, wo: Vector3, footprint: Optional[MicrofacetFootprint] = None,
             rng_key: Optional[jax.random.PRNGKey] = None, uv=None,
             component: int = -1, type_mask: int = ALL_COMPONENTS) -> Spectrum:
        """BSDF value times cos(theta_o) for unit directions in the local frame.

        A footprint selects the discrete glint path, which draws the glint
        colour with ``rng_key``.
        """
        wi = jnp.asarray(wi, dtype=float)
        wo = jnp.asarray(wo, dtype=float)
        zero = jnp.zeros(self.wavelengths.shape)
        if not self.component_enabled(component, type_mask) or wi[2] <= 0.0 or wo[2] <= 0.0:
            return zero

        if uv is None:
            uv = footprint.uv if footprint is not None else jnp.zeros(2)
        params, min_height, max_height, spec = self.shading_params(uv)

        if footprint is None:
            return _eval_smooth(wi, wo, self.distribution, params, spec)

        if rng_key is None:
            raise ValueError("A PRNG key is required to evaluate a pixel footprint")
        density, count = self.footprint_density(wi, wo, footprint)
        if density <= 0.0:
            return zero
        return _eval_discrete(wi, wo, density, count, float(footprint.area()), self.cone_solid_angle,
                              self.distribution, params, spec, min_height, max_height, rng_key)

    def pdf(self, wi: Vector3, wo: Vector3, component: int = -1, type_mask: int = ALL_COMPONENTS) -> jnp.ndarray:
        """Solid-angle density of ``sample`` ignoring the cone perturbation."""
        if not self.component_enabled(component, type_mask):
            return jnp.zeros(())
        return _pdf(jnp.asarray(wi, dtype=float), jnp.asarray(wo, dtype=float), self.sampling_distribution)

    def sample(self, wi: Vector3, sample2, rng_key: jax.random.PRNGKey,
               footprint: Optional[MicrofacetFootprint] = None, uv=None,
               component: int = -1, type_mask: int = ALL_COMPONENTS) -> BSDFSample:
        """Importance sample an outgoing direction; ``weight`` is eval / pdf."""
        wi = jnp.asarray(wi, dtype=float)
        discrete = footprint is not None
        rejected = BSDFSample(wo=jnp.zeros(3), weight=jnp.zeros(self.wavelengths.shape),
                              pdf=jnp.zeros(()), discrete=discrete)
        if not self.component_enabled(component, type_mask) or wi[2] <= 0.0:
            return rejected

        m, pdf_m = self.sampling_distribution.sample(wi, jnp.asarray(sample2, dtype=float))
        if pdf_m <= 0.0:
            return rejected

        cone_key, glint_key = jax.random.split(rng_key)
        wo = sample_uniform_cone(reflect(wi, m), np.cos(self.query_radius), cone_key)
        if wo[2] <= 0.0:
            return rejected

        pdf = self.pdf(wi, wo)
        if pdf <= 0.0:
            return rejected
        value = self.eval(wi, wo, footprint=footprint, rng_key=glint_key, uv=uv)
        return BSDFSample(wo=wo, weight=value / pdf, pdf=pdf, discrete=discrete)
