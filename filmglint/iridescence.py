import jax
import jax.numpy as jnp
from typing import NamedTuple, Tuple

from .fresnel import fresnel_conductor, fresnel_phase_shift
from .sensitivity import eval_sensitivity, eval_sensitivity_mean, eval_sensitivity_square
from .spectral import sqr, safe_sqrt, clamp_negative, xyz_to_rgb, XYZ_TO_CIE_RGB_MATRIX
from .types import IridescenceParams, Spectrum, N_CHANNELS

# Harmonics kept in the truncated Fourier series of the interference pattern
N_HARMONICS = 2


class PolarizationTerms(NamedTuple):
    """Interface reflectances and phases for one polarization."""
    R12: Spectrum   # Reflectance of the top (incident/film) interface
    T121: Spectrum  # Transmittance through the top interface, both ways
    R23: Spectrum   # Reflectance of the bottom (film/substrate) interface
    r123: Spectrum  # sqrt(R12 * R23)
    phi: Spectrum   # Total phase shift phi23 + phi21


class FilmGeometry(NamedTuple):
    cos_theta2: Spectrum  # Refracted cosine inside the film
    opd: Spectrum         # Optical path difference of one round trip (nm)
    parallel: PolarizationTerms
    perpendicular: PolarizationTerms


def supports_antialiasing(params: IridescenceParams) -> bool:
    """Harmonic-domain evaluation is defined for the 3-channel (XYZ/RGB) basis only."""
    return params.spectral_antialiasing and params.n_channels == N_CHANNELS


def supports_thickness_statistics(params: IridescenceParams) -> bool:
    """Mean/variance over a thickness range need the closed-form Gaussian-fit moments."""
    return supports_antialiasing(params) and params.use_gaussian_fit


def film_geometry(cos_theta1, params: IridescenceParams) -> FilmGeometry:
    """Per-wavelength Fresnel terms of both interfaces and the film's optical path."""
    eta1, eta2, eta3, kappa3 = params.eta1, params.eta2, params.eta3, params.kappa3
    ct1 = jnp.broadcast_to(cos_theta1, jnp.shape(eta2))

    # Refracted direction inside the film is wavelength dependent
    cos_theta_t_sqr = 1.0 - (1.0 - sqr(ct1)) * sqr(eta1 / eta2)
    tir = cos_theta_t_sqr <= 0.0
    ct2 = safe_sqrt(cos_theta_t_sqr)

    R12p, R12s = fresnel_conductor(ct1, eta2 / eta1, 0.0)
    R23p, R23s = fresnel_conductor(ct2, eta3 / eta2, kappa3 / eta2)

    # Total internal reflection: nothing enters the film
    R12p = jnp.where(tir, 1.0, R12p)
    R12s = jnp.where(tir, 1.0, R12s)
    R23p = jnp.where(tir, 0.0, R23p)
    R23s = jnp.where(tir, 0.0, R23s)
    T121p = 1.0 - R12p
    T121s = 1.0 - R12s

    # Phase shifts; the substrate takes the Born & Wolf attenuation index k / eta
    phi21p, phi21s = fresnel_phase_shift(ct1, eta1, eta2, 0.0)
    eta3_safe = jnp.maximum(eta3, 1e-6)
    phi23p, phi23s = fresnel_phase_shift(ct2, eta2, eta3_safe, kappa3 / eta3_safe)
    phi21p = jnp.pi - phi21p
    phi21s = jnp.pi - phi21s

    height = params.height[..., :1]
    opd = 2.0 * eta2 * height * ct2

    return FilmGeometry(
        cos_theta2=ct2,
        opd=opd,
        parallel=PolarizationTerms(R12p, T121p, R23p, safe_sqrt(R12p * R23p), phi23p + phi21p),
        perpendicular=PolarizationTerms(R12s, T121s, R23s, safe_sqrt(R12s * R23s), phi23s + phi21s),
    )


def _multiple_reflection_term(pol: PolarizationTerms) -> Spectrum:
    # Energy carried by the light that entered the film (geometric series)
    return (sqr(pol.T121) * pol.R23) / jnp.maximum(1.0 - pol.R12 * pol.R23, 1e-12)


def airy_reflectance(pol: PolarizationTerms, dphi: Spectrum) -> Spectrum:
    """Airy summation of the thin-film reflections for one polarization."""
    Rs = _multiple_reflection_term(pol)
    cosP = jnp.cos(dphi + pol.phi)
    r = pol.r123
    irid = (r * cosP - sqr(r)) / jnp.maximum(1.0 - 2.0 * r * cosP + sqr(r), 1e-12)
    return pol.R12 + Rs + 2.0 * (Rs - pol.T121) * irid


def harmonic_reflectance(pol: PolarizationTerms, opd: Spectrum, use_gaussian_fit: bool) -> Spectrum:
    """Truncated Fourier series of the interference pattern, in the XYZ basis."""
    Rs = _multiple_reflection_term(pol)
    # m = 0: DC term amplitude
    I = pol.R12 + Rs
    # m > 0: pairs of diracs
    Cm = Rs - pol.T121
    for m in range(1, N_HARMONICS + 1):
        Cm = Cm * pol.r123
        Sm = 2.0 * eval_sensitivity(m * opd, m * pol.phi, use_gaussian_fit)
        I = I + Cm * Sm
    return I


@jax.jit
def reflectance(cos_theta1, params: IridescenceParams) -> Spectrum:
    """Spectral reflectance of the air/film/substrate stack at incidence cosine ``cos_theta1``.

    With spectral antialiasing (3 channels only) the interference is summed
    in the harmonic domain and returned in CIE RGB; otherwise every
    wavelength sample gets the exact Airy sum. Negative values from the
    truncated series are clamped to zero.
    """
    geo = film_geometry(cos_theta1, params)

    if supports_antialiasing(params):
        I = harmonic_reflectance(geo.parallel, geo.opd, params.use_gaussian_fit) + \
            harmonic_reflectance(geo.perpendicular, geo.opd, params.use_gaussian_fit)
        I = xyz_to_rgb(I, XYZ_TO_CIE_RGB_MATRIX)
    else:
        dphi = 2.0 * jnp.pi * geo.opd / params.wavelengths
        I = airy_reflectance(geo.parallel, dphi) + airy_reflectance(geo.perpendicular, dphi)

    return 0.5 * clamp_negative(I)


def _thickness_moments(pol: PolarizationTerms, tao: Spectrum, min_height, max_height) -> Tuple[Spectrum, Spectrum]:
    Rs = _multiple_reflection_term(pol)
    mean = pol.R12 + Rs
    Cm = Rs - pol.T121
    variance = jnp.zeros_like(mean)
    for m in range(1, N_HARMONICS + 1):
        Cm = Cm * pol.r123
        Sm = eval_sensitivity_mean(m, tao, m * pol.phi, min_height, max_height)
        mean = mean + Cm * 2.0 * Sm
        if m == 1:
            # Cross-harmonic and cross-polarization covariances are ignored
            square = eval_sensitivity_square(tao, pol.phi, min_height, max_height)
            variance = variance + 4.0 * sqr(Cm) * (square - sqr(Sm))
    return mean, variance


@jax.jit
def mean_and_variance(cos_theta1, params: IridescenceParams, min_height, max_height) -> Tuple[Spectrum, Spectrum]:
    """Mean and variance of the reflectance for film heights uniform in [min_height, max_height] (nm).

    Results are in the XYZ basis. Only the antialiased 3-channel mode with
    the Gaussian sensitivity fit has closed-form moments; any other mode
    returns zeros (see ``supports_thickness_statistics``).
    """
    if not supports_thickness_statistics(params):
        zeros = jnp.zeros(jnp.shape(params.eta2))
        return zeros, zeros

    geo = film_geometry(cos_theta1, params)
    tao = 2.0 * params.eta2 * geo.cos_theta2

    mean_p, var_p = _thickness_moments(geo.parallel, tao, min_height, max_height)
    mean_s, var_s = _thickness_moments(geo.perpendicular, tao, min_height, max_height)

    return 0.5 * clamp_negative(mean_p + mean_s), 0.5 * clamp_negative(var_p + var_s)
