"""Shared fixtures for pytractparc tests."""

import numpy as np
import pytest

from pytractparc.io.nifti import build_volume_header, encode_volume
from pytractparc.io.trackvis import encode_streamlines

WM = 2.0
LH_PARCEL = 1005.0
RH_PARCEL = 2010.0


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def small_header():
    """Header for a 3x3x3 single-frame volume with 1 mm voxels."""
    return build_volume_header((3, 3, 3), voxel_size=(1.0, 1.0, 1.0))


@pytest.fixture
def label_grid():
    """3x3x3x1 label volume: white matter with two cortical voxels.

    Voxel (x=0, y=1, z=1) holds a left parcel, voxel (2, 2, 2) a right one.
    Grid indices are (t, z, y, x).
    """
    grid = np.full((1, 3, 3, 3), WM, dtype=np.float32)
    grid[0, 1, 1, 0] = LH_PARCEL
    grid[0, 2, 2, 2] = RH_PARCEL
    return grid


@pytest.fixture
def scenario_fibers():
    """Three fibers crossing the center voxel (1, 1, 1).

    The first ends in the left parcel, the other two in the right parcel.
    """
    return [
        np.array([[1, 1, 1], [0, 1, 1]], dtype=np.int32),
        np.array([[1, 1, 1], [2, 2, 2]], dtype=np.int32),
        np.array([[1, 1, 1], [2, 2, 2]], dtype=np.int32),
    ]


@pytest.fixture
def scenario_files(tmp_path, small_header, label_grid, scenario_fibers):
    """Write the scenario volume and streamlines to disk.

    Returns:
        (trk_path, nifti_path)
    """
    nifti_path = tmp_path / "aparc+aseg.nii"
    nifti_path.write_bytes(encode_volume(small_header, label_grid))
    _, data = encode_streamlines(small_header, scenario_fibers)
    trk_path = tmp_path / "tracts.trk"
    trk_path.write_bytes(data)
    return trk_path, nifti_path
