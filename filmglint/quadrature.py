import numpy as np
import jax.numpy as jnp
from typing import Callable, NamedTuple, Sequence

from .microfacet import MicrofacetDistribution
from .spherical import (
    SphericalConicSection, angle_between, barycentric_centroids, bounding_cap, cap_points,
    hemisphere_quadrants, points_in_triangles, split_triangles, triangle_center, triangle_excess,
)
from .types import MicrofacetFootprint

DEFAULT_MAX_DEPTH = 14
DEFAULT_TOLERANCE_ABS = 1e-5
DEFAULT_TOLERANCE_REL = 1e-5
MAX_LEAF_DIVISIONS = 8

DensityFn = Callable[[np.ndarray], np.ndarray]


class IntegrationCache(NamedTuple):
    """Arena of the adaptive subdivision tree.

    Node ``i`` covers ``triangles[i]`` and stores the integral of the
    density over it in ``values[i]``. ``children[i]`` holds the four child
    node indices in split order, or -1 for leaves. Nodes are numbered level
    by level, so every child index is larger than its parent's.
    """
    triangles: np.ndarray    # (n, 3, 3)
    values: np.ndarray       # (n,)
    children: np.ndarray     # (n, 4), int
    depth: np.ndarray        # (n,), int
    roots: np.ndarray        # (n_roots,), int
    cap_centers: np.ndarray  # (n, 3), bounding cap of each triangle
    cap_radii: np.ndarray    # (n,)

    def __len__(self):
        return self.values.shape[0]

    @property
    def max_depth(self) -> int:
        return int(self.depth.max()) if len(self) else 0

    def lookup(self, path: Sequence[int]) -> float:
        """Integral stored for a subdivision path: root index, then child indices 0-3."""
        if len(path) == 0:
            raise KeyError("Empty subdivision path")
        node = self.roots[path[0]]
        for child in path[1:]:
            node = self.children[node, child]
            if node < 0:
                raise KeyError(f"Subdivision path {tuple(path)} is below a leaf")
        return float(self.values[node])

    def total(self) -> float:
        return float(np.sum(self.values[self.roots]))


def projected_density(distribution: MicrofacetDistribution) -> DensityFn:
    """D(m) cos(theta_m) as a numpy function; it integrates to one over the hemisphere."""
    def density(m: np.ndarray) -> np.ndarray:
        m = np.asarray(m, dtype=np.float64)
        return np.asarray(distribution.eval(jnp.asarray(m))) * np.maximum(m[..., 2], 0.0)
    return density


def _two_rules(density: DensityFn, tri: np.ndarray):
    excess = triangle_excess(tri)
    rule1 = excess * density(triangle_center(tri))
    rule2 = excess * np.mean(density(tri.reshape(-1, 3)).reshape(tri.shape[:-1]), axis=-1)
    return rule1, rule2


def integrate(density: DensityFn, root_triangles: np.ndarray,
              tolerance_abs: float = DEFAULT_TOLERANCE_ABS,
              tolerance_rel: float = DEFAULT_TOLERANCE_REL,
              max_depth: int = DEFAULT_MAX_DEPTH) -> IntegrationCache:
    """Adaptive quadrature of ``density`` over each root triangle.

    A triangle is accepted when the centroid rule and the vertex rule agree
    to ``tolerance_abs`` or to ``tolerance_rel`` relative to the vertex
    rule, or when it reaches ``max_depth``; otherwise it is split in four.
    The whole tree is refined one level at a time.
    """
    root_triangles = np.asarray(root_triangles, dtype=np.float64)
    n_roots = root_triangles.shape[0]

    level_triangles = [root_triangles]
    level_values = []
    level_children = []
    next_id = n_roots

    depth = 0
    frontier = root_triangles
    while frontier.shape[0] > 0:
        rule1, rule2 = _two_rules(density, frontier)
        err = np.abs(rule1 - rule2)
        accept = (err < tolerance_abs) | (err < tolerance_rel * rule2) | (depth >= max_depth)

        refine = np.flatnonzero(~accept)
        children = np.full((frontier.shape[0], 4), -1, dtype=np.int64)
        children[refine] = next_id + np.arange(4 * refine.size).reshape(-1, 4)
        next_id += 4 * refine.size

        level_values.append(np.where(accept, rule2, 0.0))
        level_children.append(children)

        frontier = split_triangles(frontier[refine]).reshape(-1, 3, 3)
        depth += 1
        if frontier.shape[0] > 0:
            level_triangles.append(frontier)

    triangles = np.concatenate(level_triangles)
    values = np.concatenate(level_values)
    children = np.concatenate(level_children)
    depths = np.concatenate([np.full(t.shape[0], d, dtype=np.int64) for d, t in enumerate(level_triangles)])

    # Interior nodes hold the sum of their children; children always come later
    for d in range(len(level_triangles) - 2, -1, -1):
        nodes = np.flatnonzero((depths == d) & (children[:, 0] >= 0))
        values[nodes] = values[children[nodes]].sum(axis=-1)

    cap_centers, cap_radii = bounding_cap(triangles)
    return IntegrationCache(
        triangles=triangles,
        values=values,
        children=children,
        depth=depths,
        roots=np.arange(n_roots),
        cap_centers=cap_centers,
        cap_radii=cap_radii,
    )


def build_hemisphere_cache(distribution: MicrofacetDistribution,
                           tolerance_abs: float = DEFAULT_TOLERANCE_ABS,
                           tolerance_rel: float = DEFAULT_TOLERANCE_REL,
                           max_depth: int = DEFAULT_MAX_DEPTH) -> IntegrationCache:
    """Integrate the projected facet density over the four hemisphere quadrants."""
    return integrate(projected_density(distribution), hemisphere_quadrants(),
                     tolerance_abs, tolerance_rel, max_depth)


def leaf_divisions(sample_count: int) -> int:
    """Barycentric subdivisions per edge used to estimate partial leaf coverage."""
    return int(np.clip(np.ceil(np.sqrt(max(sample_count, 1))), 1, MAX_LEAF_DIVISIONS))


def _leaf_coverage_by_subdivision(density: DensityFn, conic: SphericalConicSection,
                                  cache: IntegrationCache, leaves: np.ndarray, n_div: int) -> float:
    # Density-weighted fraction of each leaf whose normals fall inside the conic
    weights = barycentric_centroids(n_div)
    points = np.einsum('pk,nkd->npd', weights, cache.triangles[leaves])
    points = points / np.linalg.norm(points, axis=-1, keepdims=True)
    f = density(points.reshape(-1, 3)).reshape(points.shape[:-1])
    inside = conic.contains(points)
    f_total = f.sum(axis=-1)
    fraction = np.where(f_total > 0.0, (f * inside).sum(axis=-1) / np.where(f_total > 0.0, f_total, 1.0), 0.0)
    return float(np.sum(cache.values[leaves] * fraction))


def _leaf_coverage_by_cap(density: DensityFn, conic: SphericalConicSection,
                          cache: IntegrationCache, leaves: np.ndarray, n_div: int) -> float:
    # The conic is smaller than the leaves: integrate directly over its bounding cap
    radius = conic.outer_radius()
    points = cap_points(conic.half_vector, radius, 2 * n_div, 4 * n_div)
    point_area = 2.0 * np.pi * (1.0 - np.cos(radius)) / points.shape[0]
    f = density(points) * conic.contains(points)
    in_leaf = points_in_triangles(cache.triangles[leaves], points)
    return float(np.sum(in_leaf @ f) * point_area)


def _partial_leaf_coverage(density: DensityFn, conic: SphericalConicSection,
                           cache: IntegrationCache, leaves: np.ndarray, n_div: int) -> float:
    outer = conic.outer_radius()
    cap_area = 2.0 * np.pi * (1.0 - np.cos(outer))
    small_conic = cap_area < triangle_excess(cache.triangles[leaves])

    total = 0.0
    if np.any(~small_conic):
        total += _leaf_coverage_by_subdivision(density, conic, cache, leaves[~small_conic], n_div)
    if np.any(small_conic):
        total += _leaf_coverage_by_cap(density, conic, cache, leaves[small_conic], n_div)
    return total


def integrate_conic(distribution: MicrofacetDistribution, conic: SphericalConicSection,
                    cache: IntegrationCache, sample_count: int = 16) -> float:
    """Integral of the cached projected density over the conic section."""
    density = projected_density(distribution)
    half = conic.half_vector
    wi = np.asarray(conic.wi, dtype=np.float64)
    inner = conic.inner_radius()
    outer = conic.outer_radius()
    n_div = leaf_divisions(sample_count)

    total = 0.0
    nodes = cache.roots
    while nodes.size > 0:
        centers = cache.cap_centers[nodes]
        radii = cache.cap_radii[nodes]
        dist = angle_between(centers, half)

        overlap = dist < radii + outer
        nodes, centers, radii, dist = nodes[overlap], centers[overlap], radii[overlap], dist[overlap]

        full = (dist + radii <= inner) & (angle_between(centers, wi) + radii < 0.5 * np.pi)
        total += float(np.sum(cache.values[nodes[full]]))

        partial = nodes[~full]
        is_leaf = cache.children[partial, 0] < 0
        if np.any(is_leaf):
            total += _partial_leaf_coverage(density, conic, cache, partial[is_leaf], n_div)
        nodes = cache.children[partial[~is_leaf]].ravel()

    return total


def eval_footprint(distribution: MicrofacetDistribution, footprint: MicrofacetFootprint,
                   conic: SphericalConicSection, cache: IntegrationCache, sample_count: int = 16) -> float:
    """Expected fraction of all facets lying in ``footprint`` with normals in ``conic``.

    Facets are spread uniformly over the unit uv square, so the spatial
    factor is the footprint area; the angular factor comes from the cached
    tree. Pure function of its inputs.
    """
    area = float(footprint.area())
    if area <= 0.0:
        return 0.0
    return area * integrate_conic(distribution, conic, cache, sample_count)
