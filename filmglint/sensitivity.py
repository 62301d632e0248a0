import os
from functools import lru_cache, partial

import jax
import jax.numpy as jnp
import numpy as np
from flax import struct

from .spectral import sqr
from .types import Spectrum

# --- Gaussian fits of the Fourier transforms of the normalized XYZ profiles ---
# One Gaussian lobe per channel, plus a secondary lobe for X that accounts
# for the short-wavelength bump of the x_bar matching function.
GAUSSIAN_VAL = jnp.array([3.8789e-13, 3.1255e-13, 3.7110e-13])
GAUSSIAN_POS = jnp.array([1.6810e+06, 1.7953e+06, 2.2084e+06])
GAUSSIAN_VAR = jnp.array([8.6556e+09, 1.8609e+10, 1.3224e+10])

X_LOBE_VAL = 6.8922e-14
X_LOBE_POS = 2.2399e+06
X_LOBE_VAR = 9.0564e+09

# Scales the fit so that a zero path difference returns the DC value (~1)
SENSITIVITY_NORMALIZATION = 1.0685e-7

# --- Tabulated version ---
TABLE_SIZE = 512
TABLE_MAX_PHASE_NM = 30000.0 # 2*pi*OPD covered by the table
TABLE_PATH = os.path.join(os.path.dirname(__file__), 'data', 'xyz_fourier_512.csv')

# Height intervals narrower than this (nm) are treated as a single height
DEGENERATE_RANGE_NM = 1e-6


@struct.dataclass
class SensitivityTable:
    """Tabulated Fourier transform of the normalized XYZ matching functions."""
    real: jnp.ndarray # Shape (3, TABLE_SIZE)
    imag: jnp.ndarray # Shape (3, TABLE_SIZE)


@lru_cache(maxsize=None)
def load_sensitivity_table(path: str = TABLE_PATH) -> SensitivityTable:
    """Load the table once per process; later calls share the same arrays."""
    rows = np.loadtxt(path, delimiter=',', comments='#')
    if rows.shape != (6, TABLE_SIZE):
        raise ValueError(f"Expected a (6, {TABLE_SIZE}) sensitivity table in {path}, got {rows.shape}")
    rows.setflags(write=False)
    return SensitivityTable(real=jnp.asarray(rows[0::2]), imag=jnp.asarray(rows[1::2]))


def _eval_sensitivity_gaussian(opd: Spectrum, shift: Spectrum) -> Spectrum:
    phase = 2.0 * jnp.pi * opd * 1.0e-9
    xyz = GAUSSIAN_VAL * jnp.sqrt(2.0 * jnp.pi * GAUSSIAN_VAR) * jnp.cos(GAUSSIAN_POS * phase + shift) * \
        jnp.exp(-sqr(phase) * GAUSSIAN_VAR / 2.0)
    phase_x = phase[..., 0]
    xyz = xyz.at[..., 0].add(
        X_LOBE_VAL * jnp.sqrt(2.0 * jnp.pi * X_LOBE_VAR) * jnp.cos(X_LOBE_POS * phase_x + shift[..., 0]) *
        jnp.exp(-X_LOBE_VAR * sqr(phase_x) / 2.0)
    )
    return xyz / SENSITIVITY_NORMALIZATION


def _eval_sensitivity_table(opd: Spectrum, shift: Spectrum, table: SensitivityTable) -> Spectrum:
    u = (2.0 * jnp.pi * opd / TABLE_MAX_PHASE_NM) * (TABLE_SIZE - 1)
    idx = jnp.clip(jnp.floor(u).astype(jnp.int32), 0, TABLE_SIZE - 1)
    channels = jnp.arange(3)
    value = jnp.cos(shift) * table.real[channels, idx] + jnp.sin(shift) * table.imag[channels, idx]
    # Beyond the table the transform has decayed: contribute nothing
    return jnp.where(u < TABLE_SIZE, value, 0.0)


@partial(jax.jit, static_argnames=['use_gaussian_fit'])
def eval_sensitivity(opd: Spectrum, shift: Spectrum, use_gaussian_fit: bool = True) -> Spectrum:
    """Fourier transform of the XYZ sensitivity curves at an optical path difference (nm) and phase shift."""
    if use_gaussian_fit:
        return _eval_sensitivity_gaussian(opd, shift)
    return _eval_sensitivity_table(opd, shift, load_sensitivity_table())


# --- Closed-form moments over a uniform thickness distribution ---
#
# The integrand A*cos(B*d + shift)*exp(-C*d^2) is integrated with the
# Gaussian expanded to second order, exp(-x) ~ 1 - x + x^2/2, which keeps
# the antiderivative a trigonometric polynomial. d is the height in meters.

def _mean_antiderivative(d, A, B, C, CB2, shift):
    sinv = jnp.sin(B * d + shift)
    cosv = jnp.cos(B * d + shift)
    Cd2 = C * sqr(d)
    cos_term = 2.0 * CB2 * d * cosv * (Cd2 - 6.0 * CB2 - 1.0)
    sin_term = sinv * (1.0 + 2.0 * CB2 + 12.0 * sqr(CB2) + 0.5 * sqr(Cd2) - Cd2 - 6.0 * CB2 * Cd2) / B
    return A * (sin_term + cos_term)


def _square_antiderivative(d, A, B, C, CB2, shift):
    sinv = jnp.sin(2.0 * (B * d + shift))
    cosv = jnp.cos(2.0 * (B * d + shift))
    Cd2 = C * sqr(d)
    poly_term = d / 2.0 - Cd2 * d / 6.0 + sqr(Cd2) * d / 20.0 + shift / (2.0 * B)
    cos_term = 0.25 * CB2 * d * cosv * (Cd2 - 1.5 * CB2 - 1.0)
    sin_term = sinv * (1.0 + 0.5 * CB2 + 0.75 * sqr(CB2) + 0.5 * sqr(Cd2) - Cd2 - 1.5 * CB2 * Cd2) / (4.0 * B)
    return A * (poly_term + sin_term + cos_term)


def _nonzero(x, tiny=1e-3):
    # Path rate B vanishes only under total internal reflection, where the
    # harmonic amplitude is zero anyway; keep the quotient finite.
    return jnp.where(jnp.abs(x) < tiny, tiny, x)


def _interval(min_height, max_height):
    width = max_height - min_height
    degenerate = width < DEGENERATE_RANGE_NM
    safe_width = jnp.where(degenerate, 1.0, width)
    return degenerate, safe_width


@jax.jit
def eval_sensitivity_mean(m, tao: Spectrum, shift: Spectrum, min_height, max_height) -> Spectrum:
    """Mean of the m-th harmonic sensitivity over heights uniform in [min_height, max_height] (nm).

    ``tao`` is the optical path per unit height (2 * eta2 * cos_theta2) and
    ``shift`` the harmonic's phase shift, so the integrand is
    ``eval_sensitivity(m * tao * h, shift)`` in Gaussian-fit mode.
    """
    A = GAUSSIAN_VAL * jnp.sqrt(2.0 * jnp.pi * GAUSSIAN_VAR) / SENSITIVITY_NORMALIZATION
    B = 2.0 * jnp.pi * m * tao * GAUSSIAN_POS
    B = _nonzero(B)
    C = 2.0 * sqr(jnp.pi * m * tao) * GAUSSIAN_VAR
    CB2 = GAUSSIAN_VAR / (2.0 * sqr(GAUSSIAN_POS))
    res = _mean_antiderivative(max_height * 1.0e-9, A, B, C, CB2, shift) - \
        _mean_antiderivative(min_height * 1.0e-9, A, B, C, CB2, shift)

    # Secondary lobe of X
    tao_x = tao[..., 0]
    Ax = X_LOBE_VAL * jnp.sqrt(2.0 * jnp.pi * X_LOBE_VAR) / SENSITIVITY_NORMALIZATION
    Bx = 2.0 * jnp.pi * m * tao_x * X_LOBE_POS
    Bx = _nonzero(Bx)
    Cx = 2.0 * sqr(jnp.pi * m * tao_x) * X_LOBE_VAR
    CB2x = X_LOBE_VAR / (2.0 * sqr(X_LOBE_POS))
    res = res.at[..., 0].add(
        _mean_antiderivative(max_height * 1.0e-9, Ax, Bx, Cx, CB2x, shift[..., 0]) -
        _mean_antiderivative(min_height * 1.0e-9, Ax, Bx, Cx, CB2x, shift[..., 0])
    )

    degenerate, safe_width = _interval(min_height, max_height)
    mean = res * 1.0e9 / safe_width
    point = _eval_sensitivity_gaussian(m * tao * 0.5 * (min_height + max_height), shift)
    return jnp.where(degenerate, point, mean)


@jax.jit
def eval_sensitivity_square(tao: Spectrum, shift: Spectrum, min_height, max_height) -> Spectrum:
    """Second raw moment of the first-harmonic sensitivity over [min_height, max_height] (nm).

    The product of the two X lobes is ignored; its contribution is visually
    negligible.
    """
    A = 2.0 * jnp.pi * GAUSSIAN_VAR * sqr(GAUSSIAN_VAL / SENSITIVITY_NORMALIZATION)
    B = 2.0 * jnp.pi * tao * GAUSSIAN_POS
    B = _nonzero(B)
    C = 4.0 * sqr(jnp.pi * tao) * GAUSSIAN_VAR
    CB2 = GAUSSIAN_VAR / sqr(GAUSSIAN_POS)
    res = _square_antiderivative(max_height * 1.0e-9, A, B, C, CB2, shift) - \
        _square_antiderivative(min_height * 1.0e-9, A, B, C, CB2, shift)

    tao_x = tao[..., 0]
    Ax = 2.0 * jnp.pi * X_LOBE_VAR * sqr(X_LOBE_VAL / SENSITIVITY_NORMALIZATION)
    Bx = 2.0 * jnp.pi * tao_x * X_LOBE_POS
    Bx = _nonzero(Bx)
    Cx = 4.0 * sqr(jnp.pi * tao_x) * X_LOBE_VAR
    CB2x = X_LOBE_VAR / sqr(X_LOBE_POS)
    res = res.at[..., 0].add(
        _square_antiderivative(max_height * 1.0e-9, Ax, Bx, Cx, CB2x, shift[..., 0]) -
        _square_antiderivative(min_height * 1.0e-9, Ax, Bx, Cx, CB2x, shift[..., 0])
    )

    degenerate, safe_width = _interval(min_height, max_height)
    square = res * 1.0e9 / safe_width
    # A single height has no spread: the second moment is the squared value
    point = sqr(_eval_sensitivity_gaussian(tao * 0.5 * (min_height + max_height), shift))
    return jnp.where(degenerate, point, square)
