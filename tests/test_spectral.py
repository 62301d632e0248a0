import jax
import jax.numpy as jnp
import numpy as np
import pytest

import filmglint  # noqa: F401  (enables 64-bit floats)
from filmglint.spectral import (
    spectral_to_xyz, xyz_to_rgb, linear_rgb_to_srgb,
    XYZ_TO_CIE_RGB_MATRIX, XYZ_TO_SRGB_MATRIX,
    CIE_1931_5NM_SAMPLE_WAVELENGTHS, CIE_1931_5NM_SAMPLE_VALUES,
    D65_5NM_SAMPLE_WAVELENGTHS, D65_5NM_SAMPLE_VALUES,
    clamp_negative, clamp_unit, average, constant_spectrum, from_continuous_spectrum,
    reflect, normalize, orthonormal_basis, sample_uniform_cone, dot,
)
from filmglint.types import WAVELENGTHS_NM, N_WAVELENGTHS, RGB_WAVELENGTHS_NM, spectral_wavelengths


# --- Tests for colour conversion ---

def test_observer_and_illuminant_tables_share_one_grid():
    assert CIE_1931_5NM_SAMPLE_WAVELENGTHS.shape == (81,)
    assert CIE_1931_5NM_SAMPLE_VALUES.shape == (81, 3)
    assert D65_5NM_SAMPLE_VALUES.shape == (81,)
    assert jnp.array_equal(D65_5NM_SAMPLE_WAVELENGTHS, CIE_1931_5NM_SAMPLE_WAVELENGTHS)
    # Normalized to 100 at 560 nm
    assert D65_5NM_SAMPLE_VALUES[36] == 100.0

def test_white_reflector_has_unit_luminance():
    """A perfect white reflector under D65 maps to Y = 100."""
    xyz = spectral_to_xyz(jnp.ones(N_WAVELENGTHS), WAVELENGTHS_NM)
    assert jnp.allclose(xyz[1], 100.0, atol=1e-9)
    # D65 white point chromaticity is roughly (0.3127, 0.3290)
    x = xyz[0] / jnp.sum(xyz)
    y = xyz[1] / jnp.sum(xyz)
    assert jnp.allclose(x, 0.3127, atol=5e-3)
    assert jnp.allclose(y, 0.3290, atol=5e-3)

def test_spectral_to_xyz_batches():
    """Leading axes of the spectrum are preserved."""
    spd = jnp.ones((4, 5, N_WAVELENGTHS)) * 0.5
    xyz = spectral_to_xyz(spd, WAVELENGTHS_NM)
    assert xyz.shape == (4, 5, 3)
    assert jnp.allclose(xyz[..., 1], 50.0, atol=1e-9)

def test_cie_rgb_equal_energy_white():
    """Equal-energy XYZ is (almost exactly) white in CIE RGB."""
    rgb = xyz_to_rgb(jnp.ones(3), XYZ_TO_CIE_RGB_MATRIX)
    assert jnp.allclose(rgb, jnp.ones(3), atol=1e-4)

def test_srgb_matrix_maps_d65_white_to_white():
    d65_xyz = jnp.array([0.95047, 1.0, 1.08883])
    rgb = xyz_to_rgb(d65_xyz, XYZ_TO_SRGB_MATRIX)
    assert jnp.allclose(rgb, jnp.ones(3), atol=1e-3)

def test_srgb_transfer_endpoints():
    values = linear_rgb_to_srgb(jnp.array([0.0, 0.002, 1.0]))
    assert jnp.allclose(values[0], 0.0)
    assert jnp.allclose(values[1], 12.92 * 0.002)
    assert jnp.allclose(values[2], 1.0, atol=1e-9)


# --- Tests for elementwise helpers ---

def test_clamps_and_average():
    s = jnp.array([-0.5, 0.25, 1.5])
    assert jnp.allclose(clamp_negative(s), jnp.array([0.0, 0.25, 1.5]))
    assert jnp.allclose(clamp_unit(s), jnp.array([0.0, 0.25, 1.0]))
    assert jnp.allclose(average(s), 0.41666666666666667)

def test_constant_and_interpolated_spectra():
    assert constant_spectrum(0.3, 7).shape == (7,)
    values = from_continuous_spectrum([400.0, 700.0], [0.0, 3.0], jnp.array([400.0, 550.0, 700.0]))
    assert jnp.allclose(values, jnp.array([0.0, 1.5, 3.0]))

def test_spectral_wavelengths():
    assert jnp.allclose(spectral_wavelengths(3), RGB_WAVELENGTHS_NM)
    grid = spectral_wavelengths(31)
    assert grid.shape == (31,)
    assert jnp.allclose(grid[0], 400.0) and jnp.allclose(grid[-1], 700.0)
    # The default grid is 10 nm apart
    assert jnp.allclose(jnp.diff(WAVELENGTHS_NM), 10.0)
    assert jnp.array_equal(spectral_wavelengths(N_WAVELENGTHS), WAVELENGTHS_NM)


# --- Tests for vector helpers ---

def test_reflect_about_normal():
    theta = 0.4
    wi = jnp.array([jnp.sin(theta), 0.0, jnp.cos(theta)])
    wo = reflect(wi, jnp.array([0.0, 0.0, 1.0]))
    assert jnp.allclose(wo, jnp.array([-jnp.sin(theta), 0.0, jnp.cos(theta)]))

def test_reflect_about_half_vector_returns_outgoing():
    wi = normalize(jnp.array([0.3, -0.2, 0.9]))
    wo = normalize(jnp.array([-0.5, 0.4, 0.6]))
    h = normalize(wi + wo)
    assert jnp.allclose(reflect(wi, h), wo, atol=1e-12)

@pytest.mark.parametrize("n", [
    [0.0, 0.0, 1.0],
    [1.0, 0.0, 0.0],
    [0.3, -0.5, 0.81],
])
def test_orthonormal_basis(n):
    n = normalize(jnp.array(n))
    t, b = orthonormal_basis(n)
    assert jnp.allclose(dot(t, n), 0.0, atol=1e-12)
    assert jnp.allclose(dot(b, n), 0.0, atol=1e-12)
    assert jnp.allclose(dot(t, b), 0.0, atol=1e-12)
    assert jnp.allclose(jnp.linalg.norm(t), 1.0)
    assert jnp.allclose(jnp.linalg.norm(b), 1.0)


# --- Tests for sample_uniform_cone ---

def test_cone_samples_stay_in_cone():
    """Every sample lies within the cone and has unit length."""
    axis = normalize(jnp.array([0.2, 0.1, 0.95]))
    cos_cutoff = np.cos(np.radians(5.0))
    keys = jax.random.split(jax.random.PRNGKey(0), 256)
    samples = jax.vmap(lambda k: sample_uniform_cone(axis, cos_cutoff, k))(keys)
    assert jnp.allclose(jnp.linalg.norm(samples, axis=-1), 1.0)
    assert jnp.all(dot(samples, axis) >= cos_cutoff - 1e-12)

def test_cone_sampling_is_deterministic_per_key():
    axis = jnp.array([0.0, 0.0, 1.0])
    key = jax.random.PRNGKey(42)
    a = sample_uniform_cone(axis, 0.9, key)
    b = sample_uniform_cone(axis, 0.9, key)
    assert jnp.array_equal(a, b)
