import jax.numpy as jnp
from flax import struct
from typing import Optional, Tuple

from .spectral import sqr, safe_sqrt, dot, normalize
from .types import Vector3

DISTRIBUTIONS = ("beckmann", "ggx")


@struct.dataclass
class MicrofacetDistribution:
    """Anisotropic Beckmann or GGX normal distribution in the local shading frame.

    Directions are unit vectors with the macro-surface normal on +z. All
    methods broadcast over leading axes, so a batch of normals of shape
    (..., 3) evaluates in one call.
    """
    alpha_u: jnp.ndarray
    alpha_v: jnp.ndarray
    kind: str = struct.field(pytree_node=False, default="beckmann")
    sample_visible: bool = struct.field(pytree_node=False, default=False)

    def __post_init__(self):
        # Only static fields are checked here; roughness may be a tracer
        if self.kind not in DISTRIBUTIONS:
            raise ValueError(f"Unknown microfacet distribution '{self.kind}', expected one of {DISTRIBUTIONS}")
        if self.sample_visible and self.kind != "ggx":
            raise ValueError(f"Visible normal sampling is not available for the '{self.kind}' distribution")

    @classmethod
    def create(cls, kind: str = "beckmann", alpha_u: float = 0.1, alpha_v: Optional[float] = None,
               sample_visible: bool = False) -> "MicrofacetDistribution":
        """Validated constructor; ``alpha_v`` defaults to ``alpha_u`` (isotropic)."""
        if alpha_v is None:
            alpha_v = alpha_u
        if alpha_u <= 0.0 or alpha_v <= 0.0:
            raise ValueError(f"Roughness must be positive, got alpha_u={alpha_u}, alpha_v={alpha_v}")
        return cls(alpha_u=jnp.asarray(float(alpha_u)), alpha_v=jnp.asarray(float(alpha_v)),
                   kind=kind.lower(), sample_visible=sample_visible)

    def scaled(self, factor: float) -> "MicrofacetDistribution":
        """Same distribution with both roughness values multiplied by ``factor``."""
        return self.replace(alpha_u=self.alpha_u * factor, alpha_v=self.alpha_v * factor)

    # --- Density ---

    def eval(self, m: Vector3) -> jnp.ndarray:
        """Microfacet density D(m); zero for normals below the horizon."""
        cos_t = m[..., 2]
        cos_t2 = jnp.maximum(sqr(cos_t), 1e-30)
        slope2 = sqr(m[..., 0] / self.alpha_u) + sqr(m[..., 1] / self.alpha_v)

        if self.kind == "beckmann":
            value = jnp.exp(-slope2 / cos_t2) / (jnp.pi * self.alpha_u * self.alpha_v * sqr(cos_t2))
        else:
            value = 1.0 / (jnp.pi * self.alpha_u * self.alpha_v * sqr(slope2 + cos_t2))

        # Reject tiny values that would produce NaNs downstream
        value = jnp.where(value * cos_t < 1e-20, 0.0, value)
        return jnp.where(cos_t > 0.0, value, 0.0)

    def projected_roughness(self, v: Vector3) -> jnp.ndarray:
        """Roughness along the azimuth of ``v``."""
        sin_t2 = sqr(v[..., 0]) + sqr(v[..., 1])
        alpha2 = (sqr(v[..., 0] * self.alpha_u) + sqr(v[..., 1] * self.alpha_v)) / jnp.maximum(sin_t2, 1e-30)
        return jnp.where(sin_t2 > 0.0, jnp.sqrt(alpha2), self.alpha_u)

    def smith_g1(self, v: Vector3, m: Vector3) -> jnp.ndarray:
        """Smith shadowing-masking for one direction."""
        cos_t = v[..., 2]
        tan_t = safe_sqrt(1.0 - sqr(cos_t)) / jnp.where(cos_t == 0.0, 1e-30, cos_t)
        alpha = self.projected_roughness(v)
        safe_tan = jnp.where(tan_t == 0.0, 1.0, tan_t)

        if self.kind == "beckmann":
            a = 1.0 / (alpha * safe_tan)
            # Rational approximation of Walter et al.
            result = jnp.where(a >= 1.6, 1.0, (3.535 * a + 2.181 * sqr(a)) / (1.0 + 2.276 * a + 2.577 * sqr(a)))
        else:
            root = alpha * safe_tan
            result = 2.0 / (1.0 + jnp.sqrt(1.0 + sqr(root)))

        result = jnp.where(tan_t == 0.0, 1.0, result)
        # Back-facing with respect to either the facet or the macro surface
        return jnp.where(dot(v, m) * cos_t <= 0.0, 0.0, result)

    def G(self, wi: Vector3, wo: Vector3, m: Vector3) -> jnp.ndarray:
        """Separable Smith shadowing-masking term."""
        return self.smith_g1(wi, m) * self.smith_g1(wo, m)

    # --- Sampling ---

    def _sample_all(self, u: jnp.ndarray) -> Vector3:
        # Slopes drawn in the stretched (unit roughness) configuration
        if self.kind == "beckmann":
            radius = safe_sqrt(-jnp.log1p(-u[..., 0]))
        else:
            radius = safe_sqrt(u[..., 0] / jnp.maximum(1.0 - u[..., 0], 1e-12))
        phi = 2.0 * jnp.pi * u[..., 1]
        slope_x = radius * jnp.cos(phi) * self.alpha_u
        slope_y = radius * jnp.sin(phi) * self.alpha_v
        return normalize(jnp.stack([-slope_x, -slope_y, jnp.ones_like(slope_x)], axis=-1))

    def _sample_visible_ggx(self, wi: Vector3, u: jnp.ndarray) -> Vector3:
        # Heitz 2018, "Sampling the GGX Distribution of Visible Normals"
        vh = normalize(jnp.stack([self.alpha_u * wi[..., 0], self.alpha_v * wi[..., 1], wi[..., 2]], axis=-1))
        lensq = sqr(vh[..., 0]) + sqr(vh[..., 1])
        inv_len = 1.0 / jnp.sqrt(jnp.maximum(lensq, 1e-30))
        t1 = jnp.where(
            (lensq > 0.0)[..., None],
            jnp.stack([-vh[..., 1] * inv_len, vh[..., 0] * inv_len, jnp.zeros_like(lensq)], axis=-1),
            jnp.array([1.0, 0.0, 0.0]),
        )
        t2 = jnp.cross(vh, t1)

        r = jnp.sqrt(u[..., 0])
        phi = 2.0 * jnp.pi * u[..., 1]
        p1 = r * jnp.cos(phi)
        p2 = r * jnp.sin(phi)
        s = 0.5 * (1.0 + vh[..., 2])
        p2 = (1.0 - s) * safe_sqrt(1.0 - sqr(p1)) + s * p2

        nh = p1[..., None] * t1 + p2[..., None] * t2 + safe_sqrt(1.0 - sqr(p1) - sqr(p2))[..., None] * vh
        return normalize(jnp.stack([self.alpha_u * nh[..., 0], self.alpha_v * nh[..., 1],
                                    jnp.maximum(nh[..., 2], 1e-6)], axis=-1))

    def sample(self, wi: Vector3, u: jnp.ndarray) -> Tuple[Vector3, jnp.ndarray]:
        """Draw a microfacet normal from two uniform numbers; returns (m, pdf(wi, m))."""
        if self.sample_visible:
            m = self._sample_visible_ggx(wi, u)
        else:
            m = self._sample_all(u)
        return m, self.pdf(wi, m)

    def pdf(self, wi: Vector3, m: Vector3) -> jnp.ndarray:
        """Solid-angle density of ``sample`` producing the normal ``m``."""
        if self.sample_visible:
            cos_i = wi[..., 2]
            value = self.eval(m) * self.smith_g1(wi, m) * jnp.abs(dot(wi, m)) / jnp.where(cos_i == 0.0, 1e-30, cos_i)
            return jnp.where(cos_i > 0.0, value, 0.0)
        return self.eval(m) * m[..., 2]
