import jax.numpy as jnp
from jax import jit
from typing import Tuple

from .spectral import sqr, safe_sqrt


@jit
def fresnel_conductor(cos_theta_i, eta, k) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Polarized Fresnel power reflectance (R_p, R_s) at a conductor interface.

    ``eta`` and ``k`` are relative to the incident medium. Modified from
    "Optics" by K.D. Moeller, University Science Books, 1988. With k=0 this
    is the dielectric Fresnel equation (below the critical angle).
    """
    cos_theta_i2 = cos_theta_i * cos_theta_i
    sin_theta_i2 = 1.0 - cos_theta_i2
    sin_theta_i4 = sin_theta_i2 * sin_theta_i2

    temp1 = eta * eta - k * k - sin_theta_i2
    a2pb2 = safe_sqrt(temp1 * temp1 + 4.0 * k * k * eta * eta)
    a = safe_sqrt(0.5 * (a2pb2 + temp1))

    term1 = a2pb2 + cos_theta_i2
    term2 = 2.0 * a * cos_theta_i
    r_s = (term1 - term2) / jnp.maximum(term1 + term2, 1e-30)

    term3 = a2pb2 * cos_theta_i2 + sin_theta_i4
    term4 = term2 * sin_theta_i2
    r_p = r_s * (term3 - term4) / jnp.maximum(term3 + term4, 1e-30)

    return jnp.clip(r_p, 0.0, 1.0), jnp.clip(r_s, 0.0, 1.0)


@jit
def fresnel_phase_shift(cos_theta, eta1, eta2, kappa2) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Phase retardation (phi_p, phi_s) on reflection at an interface, Born & Wolf.

    The lower medium has complex index ``eta2 * (1 + i * kappa2)``, so
    ``kappa2`` is the attenuation index (extinction coefficient / eta2),
    zero for a dielectric. Phases follow the Born & Wolf sign convention;
    for s polarization this is the argument of -r_s.
    """
    sin_theta_sqr = 1.0 - sqr(cos_theta)
    A = sqr(eta2) * (1.0 - sqr(kappa2)) - sqr(eta1) * sin_theta_sqr
    B = jnp.sqrt(sqr(A) + sqr(2.0 * sqr(eta2) * kappa2))
    # B >= |A|: both radicands are non-negative up to rounding
    U = safe_sqrt((A + B) / 2.0)
    V = safe_sqrt((B - A) / 2.0)

    # atan2(0, 0) is 0, so matched indices (eta1 == eta2, kappa2 == 0) are safe
    phi_s = jnp.arctan2(2.0 * eta1 * V * cos_theta, sqr(U) + sqr(V) - sqr(eta1 * cos_theta))
    phi_p = jnp.arctan2(
        2.0 * eta1 * sqr(eta2) * cos_theta * (2.0 * kappa2 * U - (1.0 - sqr(kappa2)) * V),
        sqr(sqr(eta2) * (1.0 + sqr(kappa2)) * cos_theta) - sqr(eta1) * (sqr(U) + sqr(V)),
    )
    return phi_p, phi_s
