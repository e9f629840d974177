"""Read and write single-file NIfTI-1 volumes holding float32 voxels.

Layout: a 348-byte header, one float32 of padding, then the grid with x
varying fastest and t slowest. Only uncompressed, little-endian files are
handled.
"""

from pathlib import Path

import numpy as np

from pytractparc.errors import FormatError, IoError, PreconditionViolation
from pytractparc.io.fields import Field, read_table, write_table
from pytractparc.types import VolumeHeader, VoxelGrid

HEADER_SIZE = 348
NIFTI1_MAGICS = (b"n+1\x00", b"ni1\x00")
DT_FLOAT32 = 16
FLOAT_DTYPE = "<f4"
FLOAT_SIZE = 4

NIFTI1_HEADER = (
    Field("sizeof_hdr", "<i4"),
    Field("data_type", "|S10"),
    Field("db_name", "|S18"),
    Field("extents", "<i4"),
    Field("session_error", "<i2"),
    Field("regular", "|S1"),
    Field("dim_info", "|u1"),
    Field("dim", "<u2", (8,)),
    Field("intent_p1", "<f4"),
    Field("intent_p2", "<f4"),
    Field("intent_p3", "<f4"),
    Field("intent_code", "<i2"),
    Field("datatype", "<i2"),
    Field("bitpix", "<i2"),
    Field("slice_start", "<i2"),
    Field("pixdim", "<f4", (8,)),
    Field("vox_offset", "<f4"),
    Field("scl_slope", "<f4"),
    Field("scl_inter", "<f4"),
    Field("slice_end", "<i2"),
    Field("slice_code", "|u1"),
    Field("xyzt_units", "|u1"),
    Field("cal_max", "<f4"),
    Field("cal_min", "<f4"),
    Field("slice_duration", "<f4"),
    Field("toffset", "<f4"),
    Field("glmax", "<i4"),
    Field("glmin", "<i4"),
    Field("descrip", "|S80"),
    Field("aux_file", "|S24"),
    Field("qform_code", "<i2"),
    Field("sform_code", "<i2"),
    Field("quatern_b", "<f4"),
    Field("quatern_c", "<f4"),
    Field("quatern_d", "<f4"),
    Field("qoffset_x", "<f4"),
    Field("qoffset_y", "<f4"),
    Field("qoffset_z", "<f4"),
    Field("srow_x", "<f4", (4,)),
    Field("srow_y", "<f4", (4,)),
    Field("srow_z", "<f4", (4,)),
    Field("intent_name", "|S16"),
    Field("magic", "|S4"),
)


def decode_volume(data: bytes) -> tuple[VolumeHeader, VoxelGrid]:
    """Decode a NIfTI-1 byte stream into its header and voxel grid.

    Args:
        data: Complete file contents.

    Returns:
        (header, grid) where grid is a writable float32 array shaped
        (t, z, y, x), independent of the header and of ``data``.

    Raises:
        FormatError: If the header is short or inconsistent, the voxels are
            not float32, or the data region does not hold exactly one padding
            float plus x*y*z*t voxels.
    """
    if len(data) < HEADER_SIZE:
        raise FormatError(
            f"Expected at least {HEADER_SIZE} header bytes, got {len(data)}")

    header = VolumeHeader(fields=read_table(data, NIFTI1_HEADER))
    if header.sizeof_hdr != HEADER_SIZE:
        raise FormatError(
            f"Wrong header size: expected {HEADER_SIZE}, "
            f"got {header.sizeof_hdr}")
    if header.magic not in NIFTI1_MAGICS:
        raise FormatError(
            f"Wrong magic: expected one of {NIFTI1_MAGICS}, got {header.magic!r}")
    if header.datatype != DT_FLOAT32:
        raise FormatError(
            f"Unsupported datatype code {header.datatype}: "
            f"expected {DT_FLOAT32} (float32)")

    payload = len(data) - HEADER_SIZE
    if payload % FLOAT_SIZE:
        raise FormatError(
            f"Data region of {payload} bytes is not a multiple of "
            f"{FLOAT_SIZE}")

    shape = header.grid_shape
    expected = int(np.prod(shape, dtype=np.int64)) + 1
    actual = payload // FLOAT_SIZE
    if actual != expected:
        raise FormatError(
            f"Expected {expected} floats (1 padding + {expected - 1} voxels "
            f"for extents {header.extents}), got {actual}")

    values = np.frombuffer(data, dtype=FLOAT_DTYPE, count=actual,
                           offset=HEADER_SIZE)
    grid = values[1:].reshape(shape).astype(np.float32)
    return header, grid


def encode_volume(header: VolumeHeader, grid: VoxelGrid) -> bytes:
    """Encode a header and grid back into a NIfTI-1 byte stream.

    The header is written verbatim, followed by a zero padding float and the
    grid in (t, z, y, x) order.

    Raises:
        PreconditionViolation: If the grid shape disagrees with the header.
    """
    grid = np.asarray(grid)
    if grid.shape != header.grid_shape:
        raise PreconditionViolation(
            f"Grid shape {grid.shape} does not match header extents "
            f"{header.grid_shape}")
    return b"".join([
        write_table(header.fields, NIFTI1_HEADER),
        np.zeros(1, dtype=FLOAT_DTYPE).tobytes(),
        np.ascontiguousarray(grid, dtype=FLOAT_DTYPE).tobytes(),
    ])


def empty_grid(header: VolumeHeader) -> VoxelGrid:
    """Zero-filled grid matching the header's extents."""
    return np.zeros(header.grid_shape, dtype=np.float32)


def build_volume_header(
    extents: tuple[int, ...],
    voxel_size: tuple[float, float, float] = (1.0, 1.0, 1.0),
    affine: np.ndarray | None = None,
) -> VolumeHeader:
    """Create a float32 single-file header for a grid of the given extents.

    Args:
        extents: (x, y, z) or (x, y, z, t).
        voxel_size: Spacing along x, y, z in millimeters.
        affine: 4x4 voxel-to-world matrix; defaults to diagonal scaling by
            ``voxel_size``.
    """
    if len(extents) not in (3, 4):
        raise ValueError(f"Expected 3 or 4 extents, got {len(extents)}")
    if affine is None:
        affine = np.diag([*voxel_size, 1.0])
    affine = np.asarray(affine, dtype=np.float64)

    dim = np.ones(8, dtype="<u2")
    dim[0] = len(extents)
    dim[1:1 + len(extents)] = extents
    pixdim = np.ones(8, dtype="<f4")
    pixdim[1:4] = voxel_size

    fields = {f.name: _zero_value(f) for f in NIFTI1_HEADER}
    fields.update(
        sizeof_hdr=HEADER_SIZE,
        dim=dim,
        datatype=DT_FLOAT32,
        bitpix=32,
        pixdim=pixdim,
        vox_offset=float(HEADER_SIZE + FLOAT_SIZE),
        scl_slope=1.0,
        xyzt_units=2,
        sform_code=2,
        srow_x=affine[0].astype("<f4"),
        srow_y=affine[1].astype("<f4"),
        srow_z=affine[2].astype("<f4"),
        magic=NIFTI1_MAGICS[0],
    )
    return VolumeHeader(fields=fields)


def _zero_value(field: Field):
    if field.is_bytes:
        return b""
    if field.shape:
        return np.zeros(field.shape, dtype=field.dtype)
    return 0


def read_volume(path: str | Path) -> tuple[VolumeHeader, VoxelGrid]:
    """Read and decode a NIfTI-1 file."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise IoError(f"Could not read volume {path}: {exc}") from exc
    try:
        return decode_volume(data)
    except FormatError as exc:
        raise FormatError(f"{path}: {exc}") from exc


def write_volume(path: str | Path, header: VolumeHeader,
                 grid: VoxelGrid) -> None:
    """Encode and write a NIfTI-1 file, creating parent directories."""
    path = Path(path)
    data = encode_volume(header, grid)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise IoError(f"Could not write volume {path}: {exc}") from exc
