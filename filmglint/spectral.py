import jax
import jax.numpy as jnp
from jax import jit
from typing import Tuple

from .types import Spectrum, N_CHANNELS

# --- CIE 1931 2-degree Standard Observer Color Matching Functions ---
# Data sourced from CIE via CVRL (http://cvrl.ioo.ucl.ac.uk/database/text/cmfs/ciexyz31_5.htm)
# Wavelengths: 380 to 780 nm at 5 nm steps (81 samples)

CIE_1931_5NM_SAMPLE_WAVELENGTHS = jnp.array([
    380., 385., 390., 395., 400., 405., 410., 415., 420., 425., 430., 435., 
    440., 445., 450., 455., 460., 465., 470., 475., 480., 485., 490., 495., 
    500., 505., 510., 515., 520., 525., 530., 535., 540., 545., 550., 555., 
    560., 565., 570., 575., 580., 585., 590., 595., 600., 605., 610., 615., 
    620., 625., 630., 635., 640., 645., 650., 655., 660., 665., 670., 675., 
    680., 685., 690., 695., 700., 705., 710., 715., 720., 725., 730., 735., 
    740., 745., 750., 755., 760., 765., 770., 775., 780. 
])

# Corrected full 81x3 array
CIE_1931_5NM_SAMPLE_VALUES = jnp.array([
    [0.0014, 0.0000, 0.0065], # 380 nm
    [0.0022, 0.0001, 0.0105], 
    [0.0042, 0.0001, 0.0201], 
    [0.0076, 0.0002, 0.0362], 
    [0.0143, 0.0004, 0.0679], # 400 nm
    [0.0232, 0.0006, 0.1102], 
    [0.0435, 0.0012, 0.2074], 
    [0.0776, 0.0022, 0.3713], 
    [0.1344, 0.0040, 0.6456], # 420 nm
    [0.2148, 0.0073, 1.0391], 
    [0.2839, 0.0116, 1.3856], 
    [0.3285, 0.0168, 1.6230], 
    [0.3483, 0.0230, 1.7471], # 440 nm
    [0.3481, 0.0298, 1.7826], 
    [0.3362, 0.0380, 1.7721], 
    [0.3187, 0.0480, 1.7441], 
    [0.2908, 0.0600, 1.6692], # 460 nm
    [0.2511, 0.0739, 1.5281], 
    [0.1954, 0.0910, 1.2876], 
    [0.1421, 0.1126, 1.0419], 
    [0.0956, 0.1390, 0.8130], # 480 nm
    [0.0580, 0.1693, 0.6162], 
    [0.0320, 0.2080, 0.4652], 
    [0.0147, 0.2586, 0.3533], 
    [0.0049, 0.3230, 0.2720], # 500 nm
    [0.0024, 0.4073, 0.2123], 
    [0.0093, 0.5030, 0.1582], 
    [0.0291, 0.6082, 0.1117], 
    [0.0633, 0.7100, 0.0782], # 520 nm
    [0.1096, 0.7932, 0.0573], 
    [0.1655, 0.8620, 0.0422], 
    [0.2257, 0.9149, 0.0298], 
    [0.2904, 0.9540, 0.0203], # 540 nm
    [0.3597, 0.9803, 0.0134], 
    [0.4334, 0.9950, 0.0087], 
    [0.5121, 1.0000, 0.0057], 
    [0.5945, 0.9950, 0.0039], # 560 nm
    [0.6784, 0.9786, 0.0027], 
    [0.7621, 0.9520, 0.0021], 
    [0.8425, 0.9154, 0.0018], 
    [0.9163, 0.8700, 0.0017], # 580 nm
    [0.9786, 0.8163, 0.0014], 
    [1.0263, 0.7570, 0.0011], 
    [1.0567, 0.6949, 0.0008], 
    [1.0622, 0.6310, 0.0006], # 600 nm
    [1.0456, 0.5668, 0.0003], 
    [1.0026, 0.5030, 0.0002], 
    [0.9384, 0.4412, 0.0001], 
    [0.8544, 0.3810, 0.0001], # 620 nm
    [0.7514, 0.3210, 0.0000], 
    [0.6424, 0.2650, 0.0000], 
    [0.5419, 0.2170, 0.0000], 
    [0.4479, 0.1750, 0.0000], # 640 nm
    [0.3608, 0.1382, 0.0000], 
    [0.2835, 0.1070, 0.0000], 
    [0.2187, 0.0816, 0.0000], 
    [0.1649, 0.0610, 0.0000], # 660 nm
    [0.1212, 0.0446, 0.0000], 
    [0.0874, 0.0320, 0.0000], 
    [0.0636, 0.0232, 0.0000], 
    [0.0468, 0.0170, 0.0000], # 680 nm
    [0.0329, 0.0119, 0.0000], 
    [0.0227, 0.0082, 0.0000], 
    [0.0158, 0.0057, 0.0000], 
    [0.0114, 0.0041, 0.0000], # 700 nm
    [0.0081, 0.0029, 0.0000], 
    [0.0058, 0.0021, 0.0000], 
    [0.0041, 0.0015, 0.0000], 
    [0.0029, 0.0010, 0.0000], # 720 nm
    [0.0020, 0.0007, 0.0000], 
    [0.0014, 0.0005, 0.0000], 
    [0.0010, 0.0004, 0.0000], 
    [0.0007, 0.0002, 0.0000], # 740 nm
    [0.0005, 0.0002, 0.0000], 
    [0.0003, 0.0001, 0.0000], 
    [0.0002, 0.0001, 0.0000], 
    [0.0002, 0.0001, 0.0000], # 760 nm
    [0.0001, 0.0000, 0.0000], 
    [0.0001, 0.0000, 0.0000], 
    [0.0001, 0.0000, 0.0000], 
    [0.0000, 0.0000, 0.0000]  # 780 nm
])


# --- CIE Standard Illuminant D65 ---
# Relative SPD at 5 nm steps, normalized to 100 at 560 nm.
D65_5NM_SAMPLE_WAVELENGTHS = jnp.array([
    380.0, 385.0, 390.0, 395.0, 400.0, 405.0, 410.0, 415.0, 420.0, 425.0, 430.0, 435.0, 
    440.0, 445.0, 450.0, 455.0, 460.0, 465.0, 470.0, 475.0, 480.0, 485.0, 490.0, 495.0, 
    500.0, 505.0, 510.0, 515.0, 520.0, 525.0, 530.0, 535.0, 540.0, 545.0, 550.0, 555.0, 
    560.0, 565.0, 570.0, 575.0, 580.0, 585.0, 590.0, 595.0, 600.0, 605.0, 610.0, 615.0, 
    620.0, 625.0, 630.0, 635.0, 640.0, 645.0, 650.0, 655.0, 660.0, 665.0, 670.0, 675.0, 
    680.0, 685.0, 690.0, 695.0, 700.0, 705.0, 710.0, 715.0, 720.0, 725.0, 730.0, 735.0, 
    740.0, 745.0, 750.0, 755.0, 760.0, 765.0, 770.0, 775.0, 780.0
])
D65_5NM_SAMPLE_VALUES = jnp.array([
    44.80, 49.40, 54.00, 57.70, 61.40, 65.00, 84.00, 94.80, 100.50, 101.40, 100.80, 110.00,
    117.00, 119.40, 119.00, 119.60, 120.20, 117.80, 115.30, 115.70, 116.10, 111.70, 107.20, 106.70,
    106.10, 105.00, 103.80, 104.60, 105.30, 103.80, 102.20, 102.80, 103.30, 102.10, 100.80, 99.80,
    100.00, 99.50, 98.90, 98.40, 97.80, 95.50, 93.10, 92.10, 91.00, 89.70, 88.30, 88.00,
    87.60, 84.80, 81.90, 83.60, 85.20, 82.30, 79.30, 80.40, 81.40, 78.80, 76.10, 74.30,
    72.40, 68.10, 63.70, 66.20, 68.60, 66.30, 63.90, 61.80, 59.60, 59.30, 58.90, 53.40,
    47.80, 50.70, 53.50, 50.60, 47.60, 47.30, 46.90, 46.90, 46.90 # Added missing values for 775nm, 780nm
])

# --- Color Space Conversion Matrices ---
# XYZ to Linear sRGB (D65 white point)
XYZ_TO_SRGB_MATRIX = jnp.array([
    [ 3.24096994, -1.53738318, -0.49861076],
    [-0.96924364,  1.8759675 ,  0.04155506],
    [ 0.05563008, -0.20397706,  1.05697151]
])

# XYZ to linear CIE RGB (CIE 1931). Unlike the sRGB matrix it maps an
# equal-energy white to equal RGB, which the thin-film model relies on.
# Source: https://en.wikipedia.org/wiki/CIE_1931_color_space
XYZ_TO_CIE_RGB_MATRIX = jnp.array([
    [ 2.3646381, -0.8965361, -0.4680737],
    [-0.5151664,  1.4264000,  0.0887608],
    [ 0.0052037, -0.0144081,  1.0092106]
])

# --- Elementwise Spectral Utilities ---

def sqr(x):
    return x * x

def safe_sqrt(x):
    """Square root with the radicand floored at zero (numerical noise guard)."""
    return jnp.sqrt(jnp.maximum(x, 0.0))

def clamp_unit(s: Spectrum) -> Spectrum:
    return jnp.clip(s, 0.0, 1.0)

def clamp_negative(s: Spectrum) -> Spectrum:
    return jnp.maximum(s, 0.0)

def average(s: Spectrum) -> jnp.ndarray:
    return jnp.mean(s, axis=-1)

def constant_spectrum(value, n_channels: int = N_CHANNELS) -> Spectrum:
    return jnp.full((n_channels,), value, dtype=jnp.result_type(float))

def from_continuous_spectrum(sample_wavelengths, sample_values, wavelengths) -> Spectrum:
    """Evaluate a tabulated (wavelength, value) curve at the given wavelengths."""
    return jnp.interp(wavelengths, jnp.asarray(sample_wavelengths), jnp.asarray(sample_values))

# --- Spectral Conversion Utilities ---

@jit
def spectral_to_xyz(spd: jnp.ndarray, wavelengths: jnp.ndarray) -> jnp.ndarray:
    """Convert a sampled reflectance spectrum to CIE XYZ under D65 (Y=100 for a white reflector)."""
    # Interpolate the CMFs and the illuminant to the rendering grid
    cmfs = jnp.stack([
        jnp.interp(wavelengths, CIE_1931_5NM_SAMPLE_WAVELENGTHS, CIE_1931_5NM_SAMPLE_VALUES[:, i])
        for i in range(3)
    ], axis=-1) # Shape: (n_wavelengths, 3)
    illuminant = jnp.interp(wavelengths, D65_5NM_SAMPLE_WAVELENGTHS, D65_5NM_SAMPLE_VALUES)

    # X = k * sum( S(lambda) * I(lambda) * x_bar(lambda) ), k = 100 / sum( I(lambda) * y_bar(lambda) )
    # The wavelength step cancels between the two sums.
    integrand = spd[..., None] * illuminant[:, None] * cmfs
    xyz_sum = jnp.sum(integrand, axis=-2)
    k = 100.0 / jnp.sum(illuminant * cmfs[:, 1])
    return xyz_sum * k

@jit
def xyz_to_rgb(xyz: jnp.ndarray, color_space_matrix: jnp.ndarray) -> jnp.ndarray:
    """Convert CIE XYZ to a linear RGB color space using a matrix."""
    rgb_linear = jnp.einsum('...k,lk->...l', xyz, color_space_matrix)
    return rgb_linear

@jit
def linear_rgb_to_srgb(rgb_linear: jnp.ndarray) -> jnp.ndarray:
    """Apply sRGB gamma correction."""
    a = 0.055
    return jnp.where(
        rgb_linear <= 0.0031308,
        12.92 * rgb_linear,
        (1.0 + a) * jnp.power(jnp.maximum(rgb_linear, 1e-9), 1.0 / 2.4) - a
    )

# --- Vector Utilities ---
def dot(v1, v2):
    return jnp.sum(v1 * v2, axis=-1)

def normalize(v):
    """Normalize a vector."""
    # Add epsilon to avoid division by zero for zero-length vectors
    norm = jnp.linalg.norm(v, axis=-1, keepdims=True)
    return v / jnp.maximum(norm, 1e-12)

def reflect(wi, m):
    """Mirror wi about the microfacet normal m (both pointing away from the surface)."""
    return 2.0 * dot(wi, m)[..., None] * m - wi

def cos_theta(v):
    """Cosine to the shading normal; the local frame has the normal on +z."""
    return v[..., 2]

def orthonormal_basis(n: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Tangent and bitangent completing n to a right-handed frame."""
    up_vector = jnp.where(jnp.abs(n[..., 2:3]) < 0.999, jnp.array([0.0, 0.0, 1.0]), jnp.array([1.0, 0.0, 0.0]))
    tangent = normalize(jnp.cross(up_vector, n))
    bitangent = jnp.cross(n, tangent)
    return tangent, bitangent

# --- Sampling Utilities ---

@jax.jit
def sample_uniform_cone(axis: jnp.ndarray, cos_cutoff: float, rng_key: jax.random.PRNGKey) -> jnp.ndarray:
    """Sample a direction uniformly inside the cone of half-angle acos(cos_cutoff) around axis."""
    key1, key2 = jax.random.split(rng_key)
    u1 = jax.random.uniform(key1)
    u2 = jax.random.uniform(key2)

    cos_t = (1.0 - u1) + u1 * cos_cutoff
    sin_t = safe_sqrt(1.0 - cos_t * cos_t)
    phi = 2.0 * jnp.pi * u2
    local_dir = jnp.array([sin_t * jnp.cos(phi), sin_t * jnp.sin(phi), cos_t])

    tangent, bitangent = orthonormal_basis(axis)
    onb_matrix = jnp.stack([tangent, bitangent, axis], axis=-1) # Columns form the basis
    return normalize(jnp.dot(onb_matrix, local_dir))
