"""Data types for the tract-based parcellation pipeline."""

import copy
from dataclasses import dataclass, field
from typing import Any, NamedTuple

import numpy as np
from numpy.typing import NDArray

# (t, z, y, x) float32 voxel grid
VoxelGrid = NDArray[np.float32]

# (n, 3) int32 voxel positions, rows are x, y, z in traversal order
Fiber = NDArray[np.int32]


class Position(NamedTuple):
    """Integer voxel coordinate used as a lookup key."""

    x: int
    y: int
    z: int


LabelObservations = dict[Position, list[int]]
FinalLabelMap = dict[Position, int]


@dataclass
class VolumeHeader:
    """Decoded NIfTI-1 header.

    Attributes:
        fields: Every header field in on-disk order, keyed by its NIfTI-1
            name. Encoding these values reproduces the original 348 bytes.
    """

    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    def copy(self) -> "VolumeHeader":
        return VolumeHeader(fields=copy.deepcopy(self.fields))

    @property
    def sizeof_hdr(self) -> int:
        return int(self.fields["sizeof_hdr"])

    @property
    def magic(self) -> bytes:
        return self.fields["magic"]

    @property
    def datatype(self) -> int:
        return int(self.fields["datatype"])

    @property
    def dim(self) -> np.ndarray:
        return self.fields["dim"]

    @property
    def pixdim(self) -> np.ndarray:
        return self.fields["pixdim"]

    @property
    def extents(self) -> tuple[int, int, int, int]:
        """Grid extents (x, y, z, t).

        Axes beyond ``dim[0]`` count as singleton, whatever their stored value.
        """
        ndim = int(self.dim[0])
        sizes = []
        for axis in range(1, 5):
            size = int(self.dim[axis])
            sizes.append(size if axis <= ndim else 1)
        return tuple(sizes)

    @property
    def grid_shape(self) -> tuple[int, int, int, int]:
        """Shape of the matching voxel grid, (t, z, y, x)."""
        x, y, z, t = self.extents
        return (t, z, y, x)

    @property
    def voxel_size(self) -> np.ndarray:
        """Voxel spacing along x, y, z in millimeters."""
        return self.pixdim[1:4].copy()

    @property
    def srow_x(self) -> np.ndarray:
        return self.fields["srow_x"]

    @property
    def srow_y(self) -> np.ndarray:
        return self.fields["srow_y"]

    @property
    def srow_z(self) -> np.ndarray:
        return self.fields["srow_z"]


@dataclass
class StreamlineHeader:
    """Decoded TrackVis header.

    Attributes:
        fields: Every header field in on-disk order, keyed by its TrackVis
            name.
    """

    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]

    @property
    def id_string(self) -> bytes:
        return self.fields["id_string"]

    @property
    def dim(self) -> np.ndarray:
        return self.fields["dim"]

    @property
    def voxel_size(self) -> np.ndarray:
        return self.fields["voxel_size"]

    @property
    def vox_to_ras(self) -> np.ndarray:
        return self.fields["vox_to_ras"]

    @property
    def n_scalars(self) -> int:
        return int(self.fields["n_scalars"])

    @property
    def n_properties(self) -> int:
        return int(self.fields["n_properties"])

    @property
    def n_count(self) -> int:
        return int(self.fields["n_count"])

    @property
    def version(self) -> int:
        return int(self.fields["version"])

    @property
    def hdr_size(self) -> int:
        return int(self.fields["hdr_size"])
