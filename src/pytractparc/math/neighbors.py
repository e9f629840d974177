"""Sparse voxel-neighborhood matrices over an arbitrary set of voxels."""

import numpy as np
import scipy.sparse as sp


def neighbor_offsets(mode: str = "full") -> np.ndarray:
    """Integer (dx, dy, dz) offsets of a voxel's neighbors.

    Args:
        mode: ``"full"`` for the 26-connected cube, ``"legacy"`` for the 7
            offsets with every component in {-1, 0}.

    Returns:
        (k, 3) int64 array, origin excluded, z slowest and x fastest.
    """
    if mode == "full":
        steps = (-1, 0, 1)
    elif mode == "legacy":
        steps = (-1, 0)
    else:
        raise ValueError(f"Unknown neighborhood mode: {mode}")
    offsets = [(dx, dy, dz)
               for dz in steps for dy in steps for dx in steps
               if (dx, dy, dz) != (0, 0, 0)]
    return np.array(offsets, dtype=np.int64)


def offset_weights(offsets: np.ndarray) -> np.ndarray:
    """Inverse Euclidean length of each offset."""
    return 1.0 / np.linalg.norm(np.asarray(offsets, dtype=np.float64), axis=1)


def build_neighbor_matrices(
    coords: np.ndarray,
    offsets: np.ndarray,
) -> tuple[sp.csr_matrix, sp.csr_matrix]:
    """Build weighted and binary neighbor matrices for a set of voxels.

    Entry (i, j) is set when voxel j sits at ``coords[i] + offset`` for one
    of the offsets. Voxels outside the set are simply absent.

    Args:
        coords: (N, 3) unique integer voxel coordinates.
        offsets: (k, 3) integer neighbor offsets.

    Returns:
        weights: (N, N) CSR matrix holding 1 / |offset| per neighbor pair.
        adjacency: (N, N) CSR matrix holding 1.0 per neighbor pair.
    """
    coords = np.asarray(coords, dtype=np.int64).reshape(-1, 3)
    offsets = np.asarray(offsets, dtype=np.int64).reshape(-1, 3)
    N = coords.shape[0]
    if N == 0 or offsets.shape[0] == 0:
        empty = sp.csr_matrix((N, N), dtype=np.float64)
        return empty, empty.copy()

    # Linear keys over a box one voxel wider than the set on every side, so
    # every neighbor candidate gets a unique key.
    lo = coords.min(axis=0) - 1
    span = coords.max(axis=0) - lo + 2

    def linear_key(c: np.ndarray) -> np.ndarray:
        s = c - lo
        return (s[:, 2] * span[1] + s[:, 1]) * span[0] + s[:, 0]

    keys = linear_key(coords)
    order = np.argsort(keys, kind="stable")
    sorted_keys = keys[order]

    weights = offset_weights(offsets)
    rows, cols, data = [], [], []
    for offset, weight in zip(offsets, weights):
        target = linear_key(coords + offset)
        pos = np.searchsorted(sorted_keys, target)
        pos = np.minimum(pos, N - 1)
        found = sorted_keys[pos] == target
        rows.append(np.flatnonzero(found))
        cols.append(order[pos[found]])
        data.append(np.full(int(found.sum()), weight))

    rows = np.concatenate(rows)
    cols = np.concatenate(cols)
    data = np.concatenate(data)
    weight_matrix = sp.csr_matrix((data, (rows, cols)), shape=(N, N))
    adjacency = sp.csr_matrix(
        (np.ones(len(rows), dtype=np.float64), (rows, cols)), shape=(N, N))
    return weight_matrix, adjacency
