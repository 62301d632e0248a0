import jax.numpy as jnp
import numpy as np
from flax import struct
from PIL import Image
from typing import Union

from .types import Spectrum


def bilinear_sample_2d(texture: jnp.ndarray, u: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
    """Performs bilinear sampling on a 2D texture (H, W, C) with wrapping. u, v are in [0, 1)."""
    h, w, c = texture.shape

    # Convert normalized coords to pixel coords
    x = jnp.mod(u, 1.0) * w - 0.5
    y = jnp.mod(v, 1.0) * h - 0.5

    x0 = jnp.floor(x).astype(jnp.int32)
    y0 = jnp.floor(y).astype(jnp.int32)

    # Fractional parts for interpolation weights
    wx = x - x0
    wy = y - y0

    # Wrap around the edges (the uv square tiles the surface)
    x1 = jnp.mod(x0 + 1, w)
    y1 = jnp.mod(y0 + 1, h)
    x0 = jnp.mod(x0, w)
    y0 = jnp.mod(y0, h)

    p00 = texture[y0, x0]
    p10 = texture[y0, x1]
    p01 = texture[y1, x0]
    p11 = texture[y1, x1]

    interp_x0 = (1.0 - wx)[..., None] * p00 + wx[..., None] * p10
    interp_x1 = (1.0 - wx)[..., None] * p01 + wx[..., None] * p11
    return (1.0 - wy)[..., None] * interp_x0 + wy[..., None] * interp_x1


@struct.dataclass
class ConstantTexture:
    value: Spectrum  # Shape (n_channels,)

    def eval(self, uv: jnp.ndarray) -> Spectrum:
        return jnp.broadcast_to(self.value, jnp.shape(uv)[:-1] + jnp.shape(self.value))


@struct.dataclass
class BitmapTexture:
    """Image texture over the unit uv square, bilinearly filtered and tiled."""
    data: jnp.ndarray  # Shape (H, W, C)

    def eval(self, uv: jnp.ndarray) -> Spectrum:
        return bilinear_sample_2d(self.data, uv[..., 0], uv[..., 1])

    @classmethod
    def from_file(cls, path: str, scale: float = 1.0, grayscale: bool = False) -> "BitmapTexture":
        """Load an 8-bit image; values are mapped to [0, 1] and multiplied by ``scale``."""
        with Image.open(path) as img:
            img = img.convert('L' if grayscale else 'RGB')
            data = np.asarray(img, dtype=np.float64) / 255.0
        if data.ndim == 2:
            data = data[..., None]
        # Image rows run top to bottom, v runs bottom to top
        return cls(data=jnp.asarray(data[::-1] * scale))


Texture = Union[ConstantTexture, BitmapTexture]


def as_texture(value, n_channels: int = 1) -> Texture:
    """Wrap a float or array as a ConstantTexture; textures pass through unchanged."""
    if isinstance(value, (ConstantTexture, BitmapTexture)):
        return value
    arr = jnp.asarray(value, dtype=jnp.result_type(float))
    if arr.ndim == 0:
        arr = jnp.full((n_channels,), arr)
    return ConstantTexture(value=arr)


def to_spectrum(value: jnp.ndarray, n_channels: int) -> Spectrum:
    """Match a texture lookup to the rendering channel count.

    Lookups that already carry ``n_channels`` values are returned as is;
    any other channel count is reduced to its mean and broadcast.
    """
    if value.shape[-1] == n_channels:
        return value
    return jnp.broadcast_to(jnp.mean(value, axis=-1, keepdims=True), value.shape[:-1] + (n_channels,))
