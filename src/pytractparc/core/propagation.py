"""Propagate cortical labels into white matter along fiber streamlines.

Three phases, run in order:

1. ``collect_observations``: every fiber takes the cortical label found at
   its last point inside a cortical range, and every voxel the fiber visits
   records that label once per visiting point.
2. ``label_scores`` and ``resolve_labels``: each observed voxel picks the
   label maximizing its local frequency plus a distance-weighted average of
   the same label's frequency at neighboring observed voxels.
3. ``select_fillable``: only voxels whose original value is a fillable code
   (white matter, corpus callosum) keep their resolved label.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from pytractparc.core.scheme import DEFAULT_SCHEME, PropagationScheme
from pytractparc.errors import PreconditionViolation
from pytractparc.math.neighbors import build_neighbor_matrices, neighbor_offsets
from pytractparc.types import (
    Fiber,
    FinalLabelMap,
    LabelObservations,
    Position,
    VoxelGrid,
)

logger = logging.getLogger(__name__)


@dataclass
class PropagationResult:
    """Final labels of one propagation run and the size of each phase.

    Attributes:
        label_map: Voxel -> propagated label, fillable voxels only.
        num_labelled_fibers: Fibers that reached a cortical label.
        num_observed_voxels: Voxels visited by at least one labelled fiber.
        num_resolved_voxels: Observed voxels that received a winning label.
    """

    label_map: FinalLabelMap = field(default_factory=dict)
    num_labelled_fibers: int = 0
    num_observed_voxels: int = 0
    num_resolved_voxels: int = 0


def label_prob(labels: Sequence[int], label: int) -> float:
    """Fraction of ``labels`` equal to ``label``."""
    if not labels:
        return 0.0
    return sum(1 for value in labels if value == label) / len(labels)


def local_probabilities(labels: Sequence[int]) -> dict[int, float]:
    """Local probability of every distinct label, in first-seen order."""
    return {label: label_prob(labels, label) for label in dict.fromkeys(labels)}


def _label_volume(grid: VoxelGrid) -> np.ndarray:
    """First frame of the grid, indexed (z, y, x)."""
    grid = np.asarray(grid)
    if grid.ndim != 4 or grid.shape[0] < 1:
        raise PreconditionViolation(
            f"Expected a (t, z, y, x) grid with t >= 1, got shape {grid.shape}")
    return grid[0]


def _cortical_mask(values: np.ndarray, scheme: PropagationScheme) -> np.ndarray:
    mask = np.zeros(values.shape, dtype=bool)
    for lo, hi in scheme.cortical_ranges:
        mask |= (values >= lo) & (values <= hi)
    return mask


def _check_bounds(fiber: np.ndarray, volume_shape: tuple[int, ...],
                  index: int) -> None:
    z_size, y_size, x_size = volume_shape
    upper = np.array([x_size, y_size, z_size])
    outside = np.any((fiber < 0) | (fiber >= upper), axis=1)
    if np.any(outside):
        bad = fiber[np.argmax(outside)]
        raise PreconditionViolation(
            f"Fiber {index} visits voxel {tuple(int(v) for v in bad)} outside "
            f"the grid extents {(x_size, y_size, z_size)}")


def _observe_fibers(
    grid: VoxelGrid,
    fibers: Sequence[Fiber],
    scheme: PropagationScheme,
) -> tuple[LabelObservations, int]:
    """Run phase 1 and count the fibers that reached a cortical label."""
    volume = _label_volume(grid)
    observations: LabelObservations = {}
    n_labelled = 0
    for index, fiber in enumerate(fibers):
        fiber = np.asarray(fiber, dtype=np.int64).reshape(-1, 3)
        if fiber.shape[0] == 0:
            continue
        _check_bounds(fiber, volume.shape, index)
        values = volume[fiber[:, 2], fiber[:, 1], fiber[:, 0]]
        hits = np.flatnonzero(_cortical_mask(values, scheme))
        if hits.size == 0:
            continue
        # The last cortical point along the fiber decides its label.
        label = int(values[hits[-1]])
        n_labelled += 1
        for x, y, z in fiber.tolist():
            observations.setdefault(Position(x, y, z), []).append(label)
    logger.debug("%d of %d fibers reached a cortical label",
                 n_labelled, len(fibers))
    return observations, n_labelled


def collect_observations(
    grid: VoxelGrid,
    fibers: Sequence[Fiber],
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> LabelObservations:
    """Record each labelled fiber's cortical label at every voxel it visits.

    Args:
        grid: (t, z, y, x) label volume; only frame 0 is read.
        fibers: Sequence of (n, 3) x, y, z voxel positions.
        scheme: Label encoding.

    Returns:
        Mapping from voxel to the labels observed there, in fiber order.

    Raises:
        PreconditionViolation: If a fiber leaves the grid.
    """
    observations, _ = _observe_fibers(grid, fibers, scheme)
    return observations


def label_scores(
    observations: LabelObservations,
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> dict[Position, dict[int, float]]:
    """Score every distinct label at every observed voxel.

    The score of a label at a voxel is

        local + mean over neighbors n with local_n > 0 of local_n / |offset|

    where ``local`` is the label's frequency among the voxel's observations
    and the neighbors come from ``scheme.neighborhood``. A label no neighbor
    carries gets a neighbor term of 0.

    Returns:
        Voxel -> {label: score}, labels in first-observed order.
    """
    positions = list(observations)
    N = len(positions)
    if N == 0:
        return {}

    label_index: dict[int, int] = {}
    rows, cols, local = [], [], []
    for i, pos in enumerate(positions):
        for label, prob in local_probabilities(observations[pos]).items():
            rows.append(i)
            cols.append(label_index.setdefault(label, len(label_index)))
            local.append(prob)
    rows = np.array(rows, dtype=np.int64)
    cols = np.array(cols, dtype=np.int64)
    local = np.array(local, dtype=np.float64)

    shape = (N, len(label_index))
    prob_matrix = sp.csr_matrix((local, (rows, cols)), shape=shape)
    present = sp.csr_matrix((np.ones_like(local), (rows, cols)), shape=shape)

    coords = np.array(positions, dtype=np.int64)
    weights, adjacency = build_neighbor_matrices(
        coords, neighbor_offsets(scheme.neighborhood))
    weighted_sum = np.asarray((weights @ prob_matrix)[rows, cols]).ravel()
    support = np.asarray((adjacency @ present)[rows, cols]).ravel()
    neighbor = np.divide(weighted_sum, support,
                         out=np.zeros_like(weighted_sum), where=support > 0)
    scores = local + neighbor

    labels_by_column = [0] * len(label_index)
    for label, j in label_index.items():
        labels_by_column[j] = label

    result: dict[Position, dict[int, float]] = {pos: {} for pos in positions}
    for i, j, score in zip(rows.tolist(), cols.tolist(), scores.tolist()):
        result[positions[i]][labels_by_column[j]] = score
    return result


def resolve_labels(
    observations: LabelObservations,
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> FinalLabelMap:
    """Choose one label per observed voxel.

    The strictly highest score from ``label_scores`` wins; on a tie the label
    observed first at the voxel is kept. Non-positive winners are dropped.
    """
    resolved: FinalLabelMap = {}
    for pos, scores in label_scores(observations, scheme).items():
        best_label, best_score = None, None
        for label, score in scores.items():
            if best_score is None or score > best_score:
                best_label, best_score = label, score
        if best_label is not None and best_label > 0:
            resolved[pos] = best_label
    return resolved


def select_fillable(
    grid: VoxelGrid,
    resolved: FinalLabelMap,
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> FinalLabelMap:
    """Keep resolved labels only where the original voxel is fillable."""
    volume = _label_volume(grid)
    return {
        pos: label for pos, label in resolved.items()
        if scheme.is_fillable(float(volume[pos.z, pos.y, pos.x]))
    }


def propagate_labels(
    grid: VoxelGrid,
    fibers: Sequence[Fiber],
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> FinalLabelMap:
    """Run all three phases and return the labels to write."""
    return run_propagation(grid, fibers, scheme).label_map


def run_propagation(
    grid: VoxelGrid,
    fibers: Sequence[Fiber],
    scheme: PropagationScheme = DEFAULT_SCHEME,
) -> PropagationResult:
    """Run all three phases, keeping the count of each one."""
    observations, n_labelled = _observe_fibers(grid, fibers, scheme)
    resolved = resolve_labels(observations, scheme)
    return PropagationResult(
        label_map=select_fillable(grid, resolved, scheme),
        num_labelled_fibers=n_labelled,
        num_observed_voxels=len(observations),
        num_resolved_voxels=len(resolved),
    )


def paint_labels(base: VoxelGrid, label_map: FinalLabelMap) -> VoxelGrid:
    """Copy ``base`` and write every mapped label into frame 0."""
    out = np.array(base, dtype=np.float32, copy=True)
    if out.ndim != 4 or out.shape[0] < 1:
        raise PreconditionViolation(
            f"Expected a (t, z, y, x) grid with t >= 1, got shape {out.shape}")
    for pos, label in label_map.items():
        out[0, pos.z, pos.y, pos.x] = label
    return out
