import numpy as np
from typing import NamedTuple, Tuple


def _normalize(v: np.ndarray) -> np.ndarray:
    return v / np.maximum(np.linalg.norm(v, axis=-1, keepdims=True), 1e-300)


def angle_between(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Angle between unit vectors, accurate for small and large angles."""
    cross = np.linalg.norm(np.cross(a, b), axis=-1)
    return np.arctan2(cross, np.sum(a * b, axis=-1))


# --- Spherical triangles ---
# Triangles are stored as arrays of shape (..., 3, 3): three unit vertices.
# The functions below work on whole batches of triangles at once.

def triangle_excess(tri: np.ndarray) -> np.ndarray:
    """Solid angle of spherical triangles (Van Oosterom & Strackee)."""
    a, b, c = tri[..., 0, :], tri[..., 1, :], tri[..., 2, :]
    numerator = np.abs(np.sum(a * np.cross(b, c), axis=-1))
    denominator = 1.0 + np.sum(a * b, axis=-1) + np.sum(b * c, axis=-1) + np.sum(c * a, axis=-1)
    return 2.0 * np.arctan2(numerator, denominator)


def triangle_center(tri: np.ndarray) -> np.ndarray:
    """Vertex mean projected back onto the sphere."""
    return _normalize(np.sum(tri, axis=-2))


def split_triangles(tri: np.ndarray) -> np.ndarray:
    """Quadrisection at the edge midpoints: (..., 3, 3) -> (..., 4, 3, 3).

    The children tile the parent: three corner triangles then the middle one.
    """
    a, b, c = tri[..., 0, :], tri[..., 1, :], tri[..., 2, :]
    m01 = _normalize(a + b)
    m12 = _normalize(b + c)
    m20 = _normalize(c + a)
    children = [
        (a, m01, m20),
        (m01, b, m12),
        (m20, m12, c),
        (m01, m12, m20),
    ]
    return np.stack([np.stack(child, axis=-2) for child in children], axis=-3)


def bounding_cap(tri: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Spherical cap (center, angular radius) enclosing each triangle."""
    center = triangle_center(tri)
    radius = np.max(angle_between(center[..., None, :], tri), axis=-1)
    return center, radius


def hemisphere_quadrants() -> np.ndarray:
    """The four triangles covering the upper hemisphere, shape (4, 3, 3)."""
    pole = np.array([0.0, 0.0, 1.0])
    # Equatorial vertices are lifted slightly so that no vertex density is exactly zero
    px = _normalize(np.array([1.0, 0.0, 1e-3]))
    nx = _normalize(np.array([-1.0, 0.0, 1e-3]))
    py = _normalize(np.array([0.0, 1.0, 1e-3]))
    ny = _normalize(np.array([0.0, -1.0, 1e-3]))
    return np.array([
        [pole, px, py],
        [pole, nx, py],
        [pole, px, ny],
        [pole, nx, ny],
    ])


def barycentric_centroids(n_div: int) -> np.ndarray:
    """Barycentric centroids of the n_div**2 sub-triangles of a regular split, shape (n_div**2, 3)."""
    points = []
    for i in range(n_div):
        for j in range(n_div - i):
            points.append(((i + 1.0 / 3.0) / n_div, (j + 1.0 / 3.0) / n_div))
            if i + j < n_div - 1:
                points.append(((i + 2.0 / 3.0) / n_div, (j + 2.0 / 3.0) / n_div))
    uv = np.array(points)
    return np.stack([1.0 - uv[:, 0] - uv[:, 1], uv[:, 0], uv[:, 1]], axis=-1)


class SphericalConicSection(NamedTuple):
    """Half vectors m whose mirror reflection of ``wi`` lands within ``radius`` of ``wo``."""
    wi: np.ndarray
    wo: np.ndarray
    radius: float

    @property
    def half_vector(self) -> np.ndarray:
        return _normalize(self.wi + self.wo)

    def contains(self, m: np.ndarray) -> np.ndarray:
        """Exact membership test for a batch of unit normals (..., 3)."""
        cos_i = np.sum(m * self.wi, axis=-1)
        reflected = 2.0 * cos_i[..., None] * m - self.wi
        return (cos_i > 0.0) & (np.sum(reflected * self.wo, axis=-1) >= np.cos(self.radius))

    def inner_radius(self) -> float:
        """Every normal within this angle of the half vector is inside (reflection doubles angles)."""
        return 0.5 * self.radius

    def outer_radius(self) -> float:
        """No normal farther than this angle from the half vector is inside."""
        alpha = float(angle_between(self.wi, self.wo)) + self.radius
        if alpha >= np.pi:
            return np.pi
        return min(np.pi, self.radius / (2.0 * np.cos(0.5 * alpha)))


def points_in_triangles(tri: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Membership of points (k, 3) in triangles (n, 3, 3), shape (n, k); either winding."""
    a, b, c = tri[:, 0, :], tri[:, 1, :], tri[:, 2, :]
    orientation = np.sign(np.sum(a * np.cross(b, c), axis=-1))[:, None]
    inside = np.ones((tri.shape[0], points.shape[0]), dtype=bool)
    for p0, p1 in ((a, b), (b, c), (c, a)):
        side = np.cross(p0, p1) @ points.T
        inside &= side * orientation >= 0.0
    return inside


def cap_points(axis: np.ndarray, radius: float, n_rings: int, n_phi: int) -> np.ndarray:
    """Stratified equal-area points inside a spherical cap, shape (n_rings * n_phi, 3)."""
    u = (np.arange(n_rings) + 0.5) / n_rings
    phi = 2.0 * np.pi * (np.arange(n_phi) + 0.5) / n_phi
    cos_t = 1.0 - u * (1.0 - np.cos(radius))
    sin_t = np.sqrt(np.maximum(1.0 - cos_t * cos_t, 0.0))
    local = np.stack([
        np.outer(sin_t, np.cos(phi)).ravel(),
        np.outer(sin_t, np.sin(phi)).ravel(),
        np.repeat(cos_t, n_phi),
    ], axis=-1)

    helper = np.array([0.0, 0.0, 1.0]) if abs(axis[2]) < 0.999 else np.array([1.0, 0.0, 0.0])
    tangent = _normalize(np.cross(helper, axis))
    bitangent = np.cross(axis, tangent)
    return local @ np.stack([tangent, bitangent, axis])
