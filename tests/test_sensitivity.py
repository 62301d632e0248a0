import jax.numpy as jnp
import numpy as np
import pytest

import filmglint  # noqa: F401  (enables 64-bit floats)
from filmglint.sensitivity import (
    TABLE_SIZE, load_sensitivity_table, eval_sensitivity,
    eval_sensitivity_mean, eval_sensitivity_square,
)


def trapezoid_mean(values):
    """Average over equally spaced samples (axis 0) with the trapezoid rule."""
    return 0.5 * np.mean(values[:-1] + values[1:], axis=0)


@pytest.fixture
def film_tao():
    """Optical path per nm of height at normal incidence in a bk7 film."""
    return jnp.full(3, 2.0 * 1.5046)


# --- Tests for the tabulated transform ---

def test_table_loads_once():
    table = load_sensitivity_table()
    assert table is load_sensitivity_table()
    assert table.real.shape == (3, TABLE_SIZE)
    assert table.imag.shape == (3, TABLE_SIZE)

def test_gaussian_fit_matches_table_at_zero_path_difference():
    """Both evaluators give the DC value of each channel.

    The Z fit overshoots the tabulated DC value by about 1.1e-3.
    """
    zero = jnp.zeros(3)
    fit = eval_sensitivity(zero, zero, use_gaussian_fit=True)
    table = eval_sensitivity(zero, zero, use_gaussian_fit=False)
    assert jnp.allclose(fit, table, rtol=2e-3)
    assert jnp.allclose(table, 1.0, atol=1e-3)

def test_table_is_zero_beyond_its_range():
    opd = jnp.full(3, 1.0e5)
    value = eval_sensitivity(opd, jnp.zeros(3), use_gaussian_fit=False)
    assert jnp.array_equal(value, jnp.zeros(3))

def test_gaussian_fit_decays_with_path_difference():
    near = eval_sensitivity(jnp.full(3, 100.0), jnp.zeros(3))
    far = eval_sensitivity(jnp.full(3, 1.0e5), jnp.zeros(3))
    assert jnp.all(jnp.abs(far) < 1e-12)
    assert jnp.all(jnp.abs(near) > jnp.abs(far))

def test_phase_shift_rotates_the_transform():
    """A shift of pi negates the value in both modes."""
    opd = jnp.full(3, 300.0)
    for use_fit in (True, False):
        base = eval_sensitivity(opd, jnp.zeros(3), use_gaussian_fit=use_fit)
        flipped = eval_sensitivity(opd, jnp.full(3, jnp.pi), use_gaussian_fit=use_fit)
        assert jnp.allclose(flipped, -base, atol=1e-12)


# --- Tests for the thickness moments ---

def test_mean_converges_to_point_value(film_tao):
    """A vanishing interval reproduces the value at its midpoint."""
    shift = jnp.array([0.3, 1.1, 2.0])
    h = 100.0
    mean = eval_sensitivity_mean(1, film_tao, shift, h - 0.01, h + 0.01)
    point = eval_sensitivity(film_tao * h, shift)
    assert jnp.allclose(mean, point, rtol=1e-3, atol=1e-6)

def test_zero_width_interval_is_exact(film_tao):
    shift = jnp.array([0.5, 0.5, 0.5])
    h = 400.0
    mean = eval_sensitivity_mean(2, film_tao, shift, h, h)
    assert jnp.allclose(mean, eval_sensitivity(2.0 * film_tao * h, shift), atol=1e-12)
    square = eval_sensitivity_square(film_tao, shift, h, h)
    first = eval_sensitivity_mean(1, film_tao, shift, h, h)
    assert jnp.allclose(square, first ** 2, atol=1e-12)

def test_mean_matches_numerical_integration(film_tao):
    shift = jnp.array([0.2, -0.7, 1.3])
    heights = np.linspace(60.0, 100.0, 4001)
    values = np.asarray(eval_sensitivity(film_tao[None, :] * heights[:, None], jnp.broadcast_to(shift, (heights.size, 3))))
    expected = trapezoid_mean(values)
    mean = eval_sensitivity_mean(1, film_tao, shift, 60.0, 100.0)
    assert jnp.allclose(mean, expected, rtol=2e-3, atol=1e-5)

def test_square_matches_numerical_integration(film_tao):
    """Second raw moment for Y and Z (the X lobe cross term is not modelled)."""
    shift = jnp.array([0.2, -0.7, 1.3])
    heights = np.linspace(60.0, 100.0, 4001)
    values = np.asarray(eval_sensitivity(film_tao[None, :] * heights[:, None], jnp.broadcast_to(shift, (heights.size, 3))))
    expected = trapezoid_mean(values ** 2)
    square = eval_sensitivity_square(film_tao, shift, 60.0, 100.0)
    assert jnp.allclose(square[1:], expected[1:], rtol=2e-3, atol=1e-5)

def test_square_bounds_squared_mean(film_tao):
    """Variance over a range of heights is non-negative."""
    shift = jnp.zeros(3)
    mean = eval_sensitivity_mean(1, film_tao, shift, 50.0, 80.0)
    square = eval_sensitivity_square(film_tao, shift, 50.0, 80.0)
    assert jnp.all(square[1:] - mean[1:] ** 2 >= -1e-9)

def test_moments_finite_under_total_internal_reflection():
    """A vanishing path rate (cos_theta2 = 0) must not produce NaNs."""
    tao = jnp.zeros(3)
    shift = jnp.zeros(3)
    assert jnp.all(jnp.isfinite(eval_sensitivity_mean(1, tao, shift, 380.0, 420.0)))
    assert jnp.all(jnp.isfinite(eval_sensitivity_square(tao, shift, 380.0, 420.0)))
