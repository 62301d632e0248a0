import jax
import jax.numpy as jnp
import numpy as np
from PIL import Image
import argparse
import time
from tqdm import tqdm

from filmglint import GlintBSDF, GlintConfig, MicrofacetFootprint
from filmglint.spectral import (
    spectral_to_xyz, xyz_to_rgb, linear_rgb_to_srgb, XYZ_TO_SRGB_MATRIX, normalize,
)
from filmglint.types import DirectionalLight, spectral_wavelengths


def direction_from_angles(theta_deg: float, phi_deg: float) -> jnp.ndarray:
    theta, phi = np.radians(theta_deg), np.radians(phi_deg)
    return normalize(jnp.array([np.sin(theta) * np.cos(phi), np.sin(theta) * np.sin(phi), np.cos(theta)]))


def render_swatch(bsdf: GlintBSDF, light: DirectionalLight, view_dir: jnp.ndarray,
                  width: int, height: int, spp: int, uv_scale: float, smooth: bool,
                  rng_key: jax.random.PRNGKey) -> np.ndarray:
    """Radiance of a flat sample seen orthographically, one footprint per pixel."""
    image = np.zeros((height, width, bsdf.n_channels))
    duv_dx = jnp.array([uv_scale / width, 0.0])
    duv_dy = jnp.array([0.0, uv_scale / height])

    for y in tqdm(range(height), desc="Rendering rows"):
        for x in range(width):
            uv = jnp.array([(x + 0.5) / width, (y + 0.5) / height]) * uv_scale
            if smooth:
                value = bsdf.eval(view_dir, light.direction, uv=uv)
            else:
                footprint = MicrofacetFootprint(uv=uv, duv_dx=duv_dx, duv_dy=duv_dy)
                rng_key, pixel_key = jax.random.split(rng_key)
                # Average a few glint colour draws per pixel
                value = jnp.zeros(bsdf.n_channels)
                for sample_key in jax.random.split(pixel_key, spp):
                    value = value + bsdf.eval(view_dir, light.direction, footprint=footprint, rng_key=sample_key)
                value = value / spp
            image[y, x] = np.asarray(value * light.spd)
    return image


def main():
    parser = argparse.ArgumentParser(description="Glittery thin-film swatch renderer")
    parser.add_argument('--width', type=int, default=64, help='Image width')
    parser.add_argument('--height', type=int, default=64, help='Image height')
    parser.add_argument('--spp', type=int, default=1, help='Glint colour draws per pixel')
    parser.add_argument('--uv-scale', type=float, default=0.05, help='uv extent covered by the whole image')
    parser.add_argument('--smooth', action='store_true', help='Ignore pixel footprints (no glints)')
    parser.add_argument('--distribution', type=str, default='beckmann', choices=['beckmann', 'ggx'])
    parser.add_argument('--alpha', type=float, default=0.1, help='Microfacet roughness')
    parser.add_argument('--facets', type=float, default=1_000_000, help='Total number of facets on the uv square')
    parser.add_argument('--query-radius', type=float, default=5.0, help='Angular query radius (degrees)')
    parser.add_argument('--material', type=str, default='Cu', help='Substrate conductor (Cu, Au, Ag, Al, none)')
    parser.add_argument('--film-ior', type=str, default='bk7', help='Film IOR name or value')
    parser.add_argument('--film-height', type=float, default=400.0, help='Film thickness (nm)')
    parser.add_argument('--height-range', type=float, default=20.0, help='Film thickness variation (nm)')
    parser.add_argument('--channels', type=int, default=3, help='3 for RGB mode, more for spectral rendering')
    parser.add_argument('--no-antialiasing', action='store_true', help='Per-wavelength Airy summation')
    parser.add_argument('--tabulated', action='store_true', help='Use the tabulated sensitivity instead of the Gaussian fit')
    parser.add_argument('--light-theta', type=float, default=30.0, help='Light zenith angle (degrees)')
    parser.add_argument('--view-theta', type=float, default=30.0, help='View zenith angle (degrees)')
    parser.add_argument('--view-phi', type=float, default=180.0, help='View azimuth relative to the light (degrees)')
    parser.add_argument('--seed', type=int, default=0, help='Random seed')
    parser.add_argument('--output', type=str, default='swatch.png', help='Output PNG path')
    args = parser.parse_args()

    film_ior = args.film_ior
    try:
        film_ior = float(film_ior)
    except ValueError:
        pass

    config = GlintConfig(
        spectral_antialiasing=not args.no_antialiasing,
        use_gaussian_fit=not args.tabulated,
        distribution=args.distribution,
        alpha_u=args.alpha,
        total_facets=args.facets,
        query_radius_deg=args.query_radius,
        material=args.material,
        film_ior=film_ior,
        height=args.film_height,
        height_range=args.height_range,
        wavelengths=spectral_wavelengths(args.channels),
    )

    print("Building material (integration tree)...")
    start_time = time.time()
    bsdf = GlintBSDF(config)
    print(f"Material ready in {time.time() - start_time:.2f} seconds.")

    light = DirectionalLight(
        direction=direction_from_angles(args.light_theta, 0.0),
        spd=jnp.ones(bsdf.n_channels) * 2.0,
    )
    view_dir = direction_from_angles(args.view_theta, args.view_phi)

    print(f"Rendering {args.width}x{args.height} swatch ({'smooth' if args.smooth else f'{args.spp} draws per pixel'})...")
    start_time = time.time()
    image = render_swatch(bsdf, light, view_dir, args.width, args.height, args.spp,
                          args.uv_scale, args.smooth, jax.random.PRNGKey(args.seed))
    print(f"Rendering finished in {time.time() - start_time:.2f} seconds.")

    if bsdf.n_channels == 3:
        # RGB mode output is already linear RGB
        image_linear = image
    else:
        image_xyz = spectral_to_xyz(jnp.asarray(image), bsdf.wavelengths) / 100.0
        image_linear = np.asarray(xyz_to_rgb(image_xyz, XYZ_TO_SRGB_MATRIX))

    # Image rows run top to bottom, v runs bottom to top
    image_linear = np.flipud(image_linear)

    print("Saving LDR image (PNG) with sRGB gamma...")
    image_srgb = np.asarray(linear_rgb_to_srgb(jnp.asarray(image_linear)))
    image_uint8 = (np.clip(image_srgb, 0.0, 1.0) * 255).astype(np.uint8)
    Image.fromarray(image_uint8, 'RGB').save(args.output)
    print(f"PNG saved to {args.output}")


if __name__ == "__main__":
    main()
