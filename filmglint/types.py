import jax.numpy as jnp
from flax import struct

# --- Spectral Configuration (Centralized) ---
# RGB rendering uses the mode wavelength of each channel.
N_CHANNELS = 3
RGB_WAVELENGTHS_NM = jnp.array([580.0, 550.0, 450.0])

# Full spectral rendering grid
N_WAVELENGTHS = 31 # e.g., 400nm to 700nm in 10nm steps
MIN_WAVELENGTH_NM = 400.0
MAX_WAVELENGTH_NM = 700.0
WAVELENGTHS_NM = jnp.linspace(MIN_WAVELENGTH_NM, MAX_WAVELENGTH_NM, N_WAVELENGTHS)

# --- Type Aliases for Clarity ---
Spectrum = jnp.ndarray # Spectral samples, shape (..., n_channels)
Vector3 = jnp.ndarray  # Shape (..., 3)

# --- BSDF component flags ---
GLOSSY_REFLECTION = 0x1
ALL_COMPONENTS = 0xFF


def spectral_wavelengths(n_samples: int,
                         min_nm: float = MIN_WAVELENGTH_NM,
                         max_nm: float = MAX_WAVELENGTH_NM) -> jnp.ndarray:
    """Evenly spaced wavelength grid for full spectral rendering."""
    if n_samples == N_CHANNELS:
        return RGB_WAVELENGTHS_NM
    return jnp.linspace(min_nm, max_nm, n_samples)


@struct.dataclass
class IridescenceParams:
    """Optical setup of the air / film / substrate stack for one evaluation.

    Only ``height[..., 0]`` is used: the film thickness (nm) is constant
    across wavelength and is stored as a spectrum for convenience.
    """
    height: Spectrum
    eta1: Spectrum
    eta2: Spectrum
    eta3: Spectrum
    kappa3: Spectrum
    wavelengths: Spectrum
    spectral_antialiasing: bool = struct.field(pytree_node=False, default=True)
    use_gaussian_fit: bool = struct.field(pytree_node=False, default=True)

    @property
    def n_channels(self) -> int:
        return self.wavelengths.shape[-1]


@struct.dataclass
class MicrofacetFootprint:
    """Pixel footprint in texture space: uv centre plus screen-space uv derivatives."""
    uv: jnp.ndarray      # Shape (2,)
    duv_dx: jnp.ndarray  # Shape (2,), (du/dx, dv/dx)
    duv_dy: jnp.ndarray  # Shape (2,), (du/dy, dv/dy)

    def corners(self) -> jnp.ndarray:
        """Four parallelogram corners in counter-clockwise order, shape (4, 2)."""
        ext_u, ext_v = self.duv_dx, self.duv_dy
        winding = ext_u[0] * ext_v[1] - ext_u[1] * ext_v[0]
        first = jnp.where(winding < 0, self.uv + ext_u, self.uv + ext_v)
        third = jnp.where(winding < 0, self.uv + ext_v, self.uv + ext_u)
        return jnp.stack([first, self.uv, third, self.uv + ext_u + ext_v])

    def area(self) -> jnp.ndarray:
        """Parallelogram area in uv units (the unit square holds every facet)."""
        return jnp.abs(self.duv_dx[0] * self.duv_dy[1] - self.duv_dx[1] * self.duv_dy[0])


@struct.dataclass
class BSDFSample:
    wo: Vector3            # Sampled outgoing direction
    weight: Spectrum       # eval / pdf, zero when the sample is rejected
    pdf: jnp.ndarray       # Solid-angle density of wo
    discrete: bool = struct.field(pytree_node=False, default=False)


# --- Light Data Structures ---
@struct.dataclass
class DirectionalLight:
    direction: Vector3 # Direction vector *TO* the light source (normalized)
    spd: Spectrum      # Irradiance spectrum
