import jax.numpy as jnp
import numpy as np
import pytest

import filmglint  # noqa: F401  (enables 64-bit floats)
from filmglint.iridescence import (
    reflectance, mean_and_variance, film_geometry, airy_reflectance, harmonic_reflectance,
    supports_antialiasing, supports_thickness_statistics,
)
from filmglint.ior import conductor_spectrum, lookup_ior
from filmglint.spectral import xyz_to_rgb, clamp_negative, XYZ_TO_CIE_RGB_MATRIX
from filmglint.types import IridescenceParams, RGB_WAVELENGTHS_NM, spectral_wavelengths


def make_params(height=400.0, wavelengths=RGB_WAVELENGTHS_NM, material="Cu",
                eta1=1.0, film="bk7", spectral_antialiasing=True, use_gaussian_fit=True):
    eta3, k3 = conductor_spectrum(material, wavelengths)
    shape = wavelengths.shape
    return IridescenceParams(
        height=jnp.full(shape, height),
        eta1=jnp.full(shape, eta1),
        eta2=jnp.full(shape, lookup_ior(film)),
        eta3=eta3,
        kappa3=k3,
        wavelengths=wavelengths,
        spectral_antialiasing=spectral_antialiasing,
        use_gaussian_fit=use_gaussian_fit,
    )


def complex_thin_film_reflectance(height, wavelengths, eta2, eta3, k3):
    """Exact normal-incidence reflectance of air / film / absorbing substrate."""
    n3 = eta3 + 1j * k3
    r12 = (1.0 - eta2) / (1.0 + eta2)
    r23 = (eta2 - n3) / (eta2 + n3)
    phase = np.exp(1j * 4.0 * np.pi * eta2 * height / wavelengths)
    r = (r12 + r23 * phase) / (1.0 + r12 * r23 * phase)
    return np.abs(r) ** 2


# --- Tests for reflectance (Airy summation) ---

def test_copper_film_normal_incidence_matches_complex_reference():
    """Flat 400nm bk7 film on copper, seen head on, without antialiasing."""
    params = make_params(spectral_antialiasing=False)
    eta3, k3 = conductor_spectrum("Cu", RGB_WAVELENGTHS_NM)
    expected = complex_thin_film_reflectance(
        400.0, np.asarray(RGB_WAVELENGTHS_NM), lookup_ior("bk7"), np.asarray(eta3), np.asarray(k3))
    result = reflectance(1.0, params)
    assert jnp.allclose(result, expected, atol=1e-4)

def test_copper_film_colour_uses_attenuation_index():
    """The substrate phase takes k / eta; passing k unscaled gives [0.746 0.478 0.535]."""
    params = make_params(spectral_antialiasing=False)
    result = reflectance(1.0, params)
    assert jnp.allclose(result, jnp.array([0.783, 0.476, 0.545]), atol=1e-3)

def test_zero_height_film_is_bare_substrate_under_film_medium():
    """Without thickness the film only changes the incident medium index."""
    params = make_params(height=0.0, spectral_antialiasing=False, film="vacuum")
    eta3, k3 = conductor_spectrum("Cu", RGB_WAVELENGTHS_NM)
    expected = ((eta3 - 1.0) ** 2 + k3 ** 2) / ((eta3 + 1.0) ** 2 + k3 ** 2)
    assert jnp.allclose(reflectance(1.0, params), expected, atol=1e-9)

@pytest.mark.parametrize("spectral_antialiasing", [False, True])
@pytest.mark.parametrize("use_gaussian_fit", [False, True])
def test_reflectance_is_non_negative(spectral_antialiasing, use_gaussian_fit):
    for height in (0.0, 120.0, 400.0, 950.0):
        params = make_params(height=height, spectral_antialiasing=spectral_antialiasing,
                             use_gaussian_fit=use_gaussian_fit)
        for cos_theta in (0.02, 0.3, 0.7, 1.0):
            value = reflectance(cos_theta, params)
            assert jnp.all(jnp.isfinite(value))
            assert jnp.all(value >= 0.0)

def test_airy_reflectance_is_bounded_for_conductors():
    wavelengths = spectral_wavelengths(31)
    for material in ("Cu", "Au", "Ag", "Al"):
        params = make_params(wavelengths=wavelengths, material=material, spectral_antialiasing=False)
        value = reflectance(0.6, params)
        assert value.shape == (31,)
        assert jnp.all(value >= 0.0) and jnp.all(value <= 1.0 + 1e-9)

def test_polarization_order_does_not_matter():
    params = make_params(spectral_antialiasing=False)
    geo = film_geometry(0.8, params)
    dphi = 2.0 * jnp.pi * geo.opd / params.wavelengths
    a = airy_reflectance(geo.parallel, dphi) + airy_reflectance(geo.perpendicular, dphi)
    b = airy_reflectance(geo.perpendicular, dphi) + airy_reflectance(geo.parallel, dphi)
    assert jnp.allclose(a, b, atol=1e-15)
    h_a = harmonic_reflectance(geo.parallel, geo.opd, True) + harmonic_reflectance(geo.perpendicular, geo.opd, True)
    h_b = harmonic_reflectance(geo.perpendicular, geo.opd, True) + harmonic_reflectance(geo.parallel, geo.opd, True)
    assert jnp.allclose(h_a, h_b, atol=1e-15)

def test_total_internal_reflection_reflects_everything():
    """A film less dense than the incident medium, hit at grazing angles."""
    for spectral_antialiasing in (False, True):
        params = make_params(eta1=1.5, film="vacuum", spectral_antialiasing=spectral_antialiasing)
        value = reflectance(0.1, params)
        assert jnp.allclose(value, 1.0, atol=1e-4)


# --- Tests for mode dispatch ---

def test_antialiasing_needs_three_channels():
    """With a spectral grid, antialiasing falls back to the Airy sum."""
    wavelengths = spectral_wavelengths(16)
    aa = make_params(wavelengths=wavelengths, spectral_antialiasing=True)
    airy = make_params(wavelengths=wavelengths, spectral_antialiasing=False)
    assert not supports_antialiasing(aa)
    assert jnp.allclose(reflectance(0.9, aa), reflectance(0.9, airy))

def test_antialiased_modes_agree_without_path_difference():
    """Gaussian fit and table only differ by the fit error of the DC term."""
    fit = reflectance(0.85, make_params(height=0.0, use_gaussian_fit=True))
    table = reflectance(0.85, make_params(height=0.0, use_gaussian_fit=False))
    assert jnp.allclose(fit, table, atol=5e-3)


# --- Tests for mean_and_variance ---

def test_zero_height_range_collapses_to_reflectance():
    params = make_params()
    for cos_theta in (0.4, 0.8, 1.0):
        mean, variance = mean_and_variance(cos_theta, params, 400.0, 400.0)
        assert jnp.allclose(variance, 0.0, atol=1e-12)
        rgb = clamp_negative(xyz_to_rgb(mean, XYZ_TO_CIE_RGB_MATRIX))
        assert jnp.allclose(rgb, reflectance(cos_theta, params), atol=1e-9)

def test_height_range_produces_spread():
    params = make_params()
    mean, variance = mean_and_variance(0.9, params, 380.0, 420.0)
    assert jnp.all(jnp.isfinite(mean)) and jnp.all(jnp.isfinite(variance))
    assert jnp.all(mean >= 0.0)
    assert jnp.all(variance >= 0.0)
    assert jnp.any(variance > 0.0)

@pytest.mark.parametrize("spectral_antialiasing,use_gaussian_fit", [
    (False, True),
    (True, False),
    (False, False),
])
def test_unsupported_modes_return_zero(spectral_antialiasing, use_gaussian_fit):
    params = make_params(spectral_antialiasing=spectral_antialiasing, use_gaussian_fit=use_gaussian_fit)
    assert not supports_thickness_statistics(params)
    mean, variance = mean_and_variance(0.9, params, 380.0, 420.0)
    assert jnp.array_equal(mean, jnp.zeros(3))
    assert jnp.array_equal(variance, jnp.zeros(3))
