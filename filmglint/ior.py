import jax.numpy as jnp
from typing import Tuple, Union

from .spectral import from_continuous_spectrum
from .types import Spectrum

# --- Dielectric Indices of Refraction (at ~589nm) ---
DIELECTRIC_IOR = {
    "vacuum": 1.0,
    "helium": 1.000036,
    "hydrogen": 1.000132,
    "air": 1.000277,
    "carbon dioxide": 1.00045,
    "water": 1.3330,
    "acetone": 1.36,
    "ethanol": 1.361,
    "carbon tetrachloride": 1.461,
    "glycerol": 1.4729,
    "benzene": 1.501,
    "silicone oil": 1.52045,
    "bromine": 1.661,
    "water ice": 1.31,
    "fused quartz": 1.458,
    "pyrex": 1.470,
    "acrylic glass": 1.49,
    "polypropylene": 1.49,
    "bk7": 1.5046,
    "sodium chloride": 1.544,
    "amber": 1.55,
    "pet": 1.5750,
    "diamond": 2.419,
}

# --- Conductor Optical Constants ---
# Sampled every 50nm over 400-700nm (after Johnson & Christy; Rakic for Al).
CONDUCTOR_WAVELENGTHS_NM = jnp.array([400.0, 450.0, 500.0, 550.0, 600.0, 650.0, 700.0])

CONDUCTOR_ETA = {
    "Cu": jnp.array([1.18, 1.17, 1.12, 1.02, 0.27, 0.21, 0.21]),
    "Au": jnp.array([1.47, 1.38, 0.97, 0.43, 0.25, 0.17, 0.16]),
    "Ag": jnp.array([0.05, 0.04, 0.05, 0.06, 0.06, 0.05, 0.04]),
    "Al": jnp.array([0.49, 0.62, 0.77, 0.96, 1.20, 1.47, 1.83]),
}

CONDUCTOR_K = {
    "Cu": jnp.array([2.21, 2.40, 2.56, 2.58, 3.41, 3.67, 4.20]),
    "Au": jnp.array([1.95, 1.92, 1.87, 2.45, 2.98, 3.47, 3.95]),
    "Ag": jnp.array([2.10, 2.66, 3.13, 3.59, 4.00, 4.48, 4.84]),
    "Al": jnp.array([4.86, 5.47, 6.08, 6.69, 7.26, 7.79, 8.31]),
}

# Perfect mirror: real part zero, unit imaginary part
NONE_MATERIAL = "none"


def lookup_ior(value: Union[str, float]) -> float:
    """Dielectric IOR by name (case insensitive) or passed through as a number."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key not in DIELECTRIC_IOR:
            raise ValueError(f"Unknown dielectric '{value}'. Known: {', '.join(sorted(DIELECTRIC_IOR))}")
        return DIELECTRIC_IOR[key]
    value = float(value)
    if value <= 0.0:
        raise ValueError(f"Index of refraction must be positive, got {value}")
    return value


def conductor_spectrum(material: str, wavelengths: Spectrum) -> Tuple[Spectrum, Spectrum]:
    """(eta, k) of a named conductor at the given wavelengths (nm)."""
    if material.lower() == NONE_MATERIAL:
        return jnp.zeros_like(wavelengths), jnp.ones_like(wavelengths)
    if material not in CONDUCTOR_ETA:
        raise ValueError(f"Unknown conductor '{material}'. Known: {', '.join(sorted(CONDUCTOR_ETA))}, {NONE_MATERIAL}")
    eta = from_continuous_spectrum(CONDUCTOR_WAVELENGTHS_NM, CONDUCTOR_ETA[material], wavelengths)
    k = from_continuous_spectrum(CONDUCTOR_WAVELENGTHS_NM, CONDUCTOR_K[material], wavelengths)
    return eta, k
