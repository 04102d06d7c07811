"""Density-based clustering of signal feature vectors.

A simplified HDBSCAN-style algorithm sized for tens to low thousands of
signals per run:

1. Build an N x N distance matrix (euclidean or cosine).
2. Mark core points from each point's k-distance (k = min_samples - 1).
3. Grow clusters breadth-first from unvisited core points; a point reaches
   every other point within ``epsilon_multiplier * k-distance`` of itself.
4. Keep groups with at least ``min_cluster_size`` members; the rest is noise.
5. Score each member's membership strength and flag outliers.

The whole thing is deterministic: no random initialisation, seeds are taken
in index order and the queue is FIFO.
"""

import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
from sklearn.metrics.pairwise import cosine_distances

from hotspots.core.errors import ComputationFailure, ConfigurationError
from hotspots.schemas.clustering import ClusteringConfig

logger = logging.getLogger(__name__)

MIN_MEMBERSHIP_STRENGTH = 0.1
MAX_MEMBERSHIP_STRENGTH = 1.0
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
CONFIDENCE_SPREAD = 0.65

# Absorbs float noise when comparing against the k-distance
_DISTANCE_TOLERANCE = 1e-12


# =============================================================================
# Data structures
# =============================================================================


@dataclass
class DensityCluster:
    """One cluster found in a run; indices refer to the input order."""

    id: int
    members: list[int]
    centroid: np.ndarray
    threshold: float
    confidence: float
    strengths: list[float] = field(default_factory=list)
    outliers: list[bool] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def outlier_count(self) -> int:
        return sum(self.outliers)

    @property
    def core_count(self) -> int:
        """Members that are not outliers."""
        return self.size - self.outlier_count


@dataclass
class ClusteringOutcome:
    """All clusters of a run plus the points left as noise."""

    clusters: list[DensityCluster]
    noise: list[int]
    total_points: int

    @property
    def outliers_flagged(self) -> int:
        return sum(c.outlier_count for c in self.clusters)


# =============================================================================
# Steps
# =============================================================================


def build_distance_matrix(vectors: np.ndarray | Sequence[Sequence[float]], metric: str) -> np.ndarray:
    """Symmetric N x N distance matrix with a zero diagonal.

    Cosine distance is ``1 - cosine similarity``; rows with zero norm have
    similarity 0 to everything, so their distance to other points is 1.
    """
    if metric not in ("euclidean", "cosine"):
        raise ConfigurationError(f"Unsupported distance metric: {metric}")

    try:
        matrix = np.asarray(vectors, dtype=np.float64)
    except ValueError as e:
        raise ComputationFailure(f"Feature vectors are not a rectangular array: {e}") from e

    if matrix.ndim != 2:
        raise ComputationFailure(f"Expected a 2-D array of vectors, got shape {matrix.shape}")
    if matrix.shape[0] == 0:
        return np.zeros((0, 0), dtype=np.float64)
    if not np.all(np.isfinite(matrix)):
        raise ComputationFailure("Feature vectors contain NaN or infinite values")

    if metric == "cosine":
        distances = np.clip(cosine_distances(matrix), 0.0, 2.0)
    else:
        # Row-wise differences keep identical vectors at exactly zero
        distances = np.empty((matrix.shape[0], matrix.shape[0]), dtype=np.float64)
        for i, row in enumerate(matrix):
            distances[i] = np.linalg.norm(matrix - row, axis=1)

    # Remove asymmetric rounding and self-distance noise
    distances = (distances + distances.T) / 2
    np.fill_diagonal(distances, 0.0)

    if not np.all(np.isfinite(distances)):
        raise ComputationFailure("Distance matrix contains non-finite values")
    return distances


def k_distances(distances: np.ndarray, min_samples: int) -> np.ndarray:
    """Distance from each point to its k-th nearest other point.

    k = min_samples - 1, clamped to the number of other points. A lone point
    has an infinite k-distance.
    """
    n = distances.shape[0]
    result = np.full(n, np.inf, dtype=np.float64)
    if n < 2:
        return result

    k = max(1, min(min_samples - 1, n - 1))
    for i in range(n):
        others = np.delete(distances[i], i)
        # Stable sort keeps equal distances in index order
        result[i] = np.sort(others, kind="stable")[k - 1]
    return result


def find_core_points(
    distances: np.ndarray,
    min_samples: int,
    kdist: np.ndarray | None = None,
) -> list[int]:
    """Indices of core points, ascending.

    A point is core when at least ``min_samples - 1`` other points lie within
    its k-distance. Ties at the k-th position all count as neighbours.
    """
    if kdist is None:
        kdist = k_distances(distances, min_samples)

    core: list[int] = []
    for i in range(distances.shape[0]):
        if not np.isfinite(kdist[i]):
            continue
        others = np.delete(distances[i], i)
        neighbours = int(np.count_nonzero(others <= kdist[i] + _DISTANCE_TOLERANCE))
        if neighbours >= min_samples - 1:
            core.append(i)
    return core


def expand_clusters(
    distances: np.ndarray,
    core_points: Sequence[int],
    kdist: np.ndarray,
    config: ClusteringConfig,
) -> tuple[list[list[int]], list[int]]:
    """Grow groups breadth-first from core points.

    Returns ``(groups, noise)``: groups that reached ``min_cluster_size``
    (members ascending, in discovery order) and every other point index.
    Points visited by a discarded group stay visited.
    """
    n = distances.shape[0]
    visited = np.zeros(n, dtype=bool)
    groups: list[list[int]] = []

    for seed in core_points:
        if visited[seed]:
            continue

        members: list[int] = []
        queue = deque([seed])
        while queue:
            point = queue.popleft()
            if visited[point]:
                continue
            visited[point] = True
            members.append(point)

            if config.epsilon_override is not None:
                epsilon = config.epsilon_override
            else:
                epsilon = config.epsilon_multiplier * kdist[point]
            if not np.isfinite(epsilon):
                continue

            for neighbour in np.flatnonzero(distances[point] <= epsilon + _DISTANCE_TOLERANCE):
                if neighbour != point and not visited[neighbour]:
                    queue.append(int(neighbour))

        if len(members) >= config.min_cluster_size:
            groups.append(sorted(members))
        else:
            logger.debug(f"Discarding group of {len(members)} seeded at point {seed}")

    clustered = {i for group in groups for i in group}
    noise = [i for i in range(n) if i not in clustered]
    return groups, noise


def cluster_threshold(distances: np.ndarray, members: Sequence[int]) -> float:
    """Mean pairwise distance inside the cluster."""
    if len(members) < 2:
        return 0.0
    idx = np.asarray(members)
    sub = distances[np.ix_(idx, idx)]
    upper = sub[np.triu_indices(len(idx), k=1)]
    return float(upper.mean())


def cluster_confidence(threshold: float, max_expected_distance: float = 2.0) -> float:
    """Tighter clusters are more confident; result lies in [0.3, 0.95]."""
    normalized = min(threshold / max_expected_distance, 1.0)
    confidence = MAX_CONFIDENCE - normalized * CONFIDENCE_SPREAD
    return float(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence)))


def score_memberships(
    distances: np.ndarray,
    members: Sequence[int],
    outlier_threshold: float = 0.5,
) -> tuple[list[float], list[bool]]:
    """Membership strength and outlier flag for each member, in member order.

    strength = 1 - mean / max of the member's distances to the others,
    clamped to [0.1, 1.0]; 1.0 when all others are at distance zero.
    """
    strengths: list[float] = []
    for point in members:
        others = [distances[point, other] for other in members if other != point]
        if not others:
            strength = MAX_MEMBERSHIP_STRENGTH
        else:
            max_distance = max(others)
            if max_distance > 0:
                strength = 1.0 - (sum(others) / len(others)) / max_distance
            else:
                strength = MAX_MEMBERSHIP_STRENGTH
        strengths.append(float(max(MIN_MEMBERSHIP_STRENGTH, min(MAX_MEMBERSHIP_STRENGTH, strength))))

    outliers = [s < outlier_threshold for s in strengths]
    return strengths, outliers


# =============================================================================
# Clusterer
# =============================================================================


class DensityClusterer:
    """Runs the full clustering procedure for one configuration."""

    def __init__(self, config: ClusteringConfig | None = None):
        self.config = config or ClusteringConfig()

    def fit(self, vectors: np.ndarray | Sequence[Sequence[float]]) -> ClusteringOutcome:
        """Cluster the given vectors.

        Raises:
            ConfigurationError: unsupported metric
            ComputationFailure: malformed or non-finite input
        """
        config = self.config
        distances = build_distance_matrix(vectors, config.metric)
        n = distances.shape[0]

        if n < config.min_cluster_size:
            logger.info(f"Only {n} points, below min_cluster_size={config.min_cluster_size}")
            return ClusteringOutcome(clusters=[], noise=list(range(n)), total_points=n)

        points = np.asarray(vectors, dtype=np.float64)
        kdist = k_distances(distances, config.min_samples)
        core_points = find_core_points(distances, config.min_samples, kdist)
        groups, noise = expand_clusters(distances, core_points, kdist, config)

        clusters: list[DensityCluster] = []
        for cluster_id, members in enumerate(groups):
            threshold = cluster_threshold(distances, members)
            strengths, outliers = score_memberships(
                distances, members, config.outlier_threshold
            )
            clusters.append(
                DensityCluster(
                    id=cluster_id,
                    members=members,
                    centroid=points[members].mean(axis=0),
                    threshold=threshold,
                    confidence=cluster_confidence(threshold, config.max_expected_distance),
                    strengths=strengths,
                    outliers=outliers,
                )
            )

        logger.info(
            f"Density clustering: {n} points, {len(core_points)} core, "
            f"{len(clusters)} clusters, {len(noise)} noise"
        )
        return ClusteringOutcome(clusters=clusters, noise=noise, total_points=n)
