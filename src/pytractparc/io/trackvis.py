"""Read and write TrackVis ``.trk`` streamline files.

Points are stored in millimeters. On read they are mapped onto the voxel grid
by dividing by the voxel size and truncating toward zero; on write the voxel
coordinates are scaled back by the voxel size. The mapping is lossy, so only
a second round trip reproduces its input exactly.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from pytractparc.errors import FormatError, IoError
from pytractparc.io.fields import (
    Field,
    FieldCursor,
    FieldWriter,
    read_table,
    write_table,
)
from pytractparc.types import Fiber, StreamlineHeader, VolumeHeader

logger = logging.getLogger(__name__)

HEADER_SIZE = 1000
ID_STRING = b"TRACK\x00"
VERSION = 2
VOXEL_ORDER = b"LAS\x00"
IMAGE_ORIENTATION_PATIENT = (1.0, 0.0, 0.0, 0.0, -1.0, 0.0)

TRACKVIS_HEADER = (
    Field("id_string", "|S6"),
    Field("dim", "<u2", (3,)),
    Field("voxel_size", "<f4", (3,)),
    Field("origin", "<f4", (3,)),
    Field("n_scalars", "<i2"),
    Field("scalar_name", "|S200"),
    Field("n_properties", "<i2"),
    Field("property_name", "|S200"),
    Field("vox_to_ras", "<f4", (4, 4)),
    Field("reserved", "|S444"),
    Field("voxel_order", "|S4"),
    Field("pad2", "|S4"),
    Field("image_orientation_patient", "<f4", (6,)),
    Field("pad1", "|S2"),
    Field("invert_x", "|u1"),
    Field("invert_y", "|u1"),
    Field("invert_z", "|u1"),
    Field("swap_xy", "|u1"),
    Field("swap_yz", "|u1"),
    Field("swap_zx", "|u1"),
    Field("n_count", "<u4"),
    Field("version", "<u4"),
    Field("hdr_size", "<u4"),
)

_COUNT = Field("n_points", "<u4")


def mm_to_voxel(points_mm: np.ndarray, voxel_size: np.ndarray) -> Fiber:
    """Map (n, 3) millimeter coordinates to integer voxel positions.

    Division happens in float32 and the quotient is truncated toward zero,
    so negative coordinates move up toward the origin as well.
    """
    scaled = np.asarray(points_mm, dtype=np.float32) / np.asarray(
        voxel_size, dtype=np.float32)
    return np.trunc(scaled).astype(np.int32)


def voxel_to_mm(positions: np.ndarray, voxel_size: np.ndarray) -> np.ndarray:
    """Map (n, 3) voxel positions back to float32 millimeter coordinates.

    The float32 product ``position * voxel_size`` can divide back to just
    under ``position`` (3 * 0.9 -> 2.9999998), which ``mm_to_voxel`` would
    truncate to the voxel below. Such products are moved away from zero one
    float32 step at a time until they map back to their own voxel.
    """
    positions = np.asarray(positions, dtype=np.int64)
    mm = np.asarray(voxel_size, dtype=np.float32) * positions.astype(np.float32)
    drifted = mm_to_voxel(mm, voxel_size) != positions
    while np.any(drifted):
        values = mm[drifted]
        away = np.where(values < 0, -np.inf, np.inf).astype(np.float32)
        mm[drifted] = np.nextafter(values, away)
        drifted = mm_to_voxel(mm, voxel_size) != positions
    return mm


def decode_streamlines(data: bytes) -> tuple[StreamlineHeader, list[Fiber]]:
    """Decode a TrackVis byte stream into its header and voxel-space fibers.

    Per-point scalars and per-track properties declared in the header are
    read past and discarded.

    Returns:
        (header, fibers) where each fiber is an (n, 3) int32 array of x, y, z
        voxel positions in the order they were stored.

    Raises:
        FormatError: If the header is short, has the wrong size field or id
            string, or the body ends inside a record.
    """
    if len(data) < HEADER_SIZE:
        raise FormatError(
            f"Expected at least {HEADER_SIZE} header bytes, got {len(data)}")

    header = StreamlineHeader(fields=read_table(data, TRACKVIS_HEADER))
    if header.hdr_size != HEADER_SIZE:
        raise FormatError(
            f"Wrong header size: expected {HEADER_SIZE}, got {header.hdr_size}")
    if not header.id_string.startswith(ID_STRING[:5]):
        raise FormatError(
            f"Wrong id string: expected {ID_STRING[:5]!r}, "
            f"got {header.id_string!r}")

    point_width = 3 + max(header.n_scalars, 0)
    n_properties = max(header.n_properties, 0)
    voxel_size = header.voxel_size
    if np.any(voxel_size == 0):
        raise FormatError(f"Voxel size must be non-zero, got {voxel_size}")

    cursor = FieldCursor(data, HEADER_SIZE)
    fibers: list[Fiber] = []
    while cursor.remaining > 0:
        try:
            n_points = cursor.read(_COUNT)
            values = cursor.read_array("<f4", n_points * point_width)
            cursor.read_array("<f4", n_properties)
        except FormatError as exc:
            raise FormatError(
                f"Truncated record for fiber {len(fibers)}: {exc}") from exc
        points = values.reshape(n_points, point_width)[:, :3]
        fibers.append(mm_to_voxel(points, voxel_size))

    if header.n_count and header.n_count != len(fibers):
        logger.warning("Header declares %d fibers but %d were read",
                       header.n_count, len(fibers))
    return header, fibers


def build_streamline_header(reference: VolumeHeader,
                            n_fibers: int) -> StreamlineHeader:
    """Create a TrackVis header describing fibers on the reference grid."""
    vox_to_ras = np.zeros((4, 4), dtype="<f4")
    vox_to_ras[0] = reference.srow_x
    vox_to_ras[1] = reference.srow_y
    vox_to_ras[2] = reference.srow_z
    vox_to_ras[3] = (0.0, 0.0, 0.0, 1.0)
    x, y, z, _ = reference.extents
    fields = {
        "id_string": ID_STRING,
        "dim": np.array([x, y, z], dtype="<u2"),
        "voxel_size": reference.voxel_size.astype("<f4"),
        "origin": np.zeros(3, dtype="<f4"),
        "n_scalars": 0,
        "scalar_name": b"",
        "n_properties": 0,
        "property_name": b"",
        "vox_to_ras": vox_to_ras,
        "reserved": b"",
        "voxel_order": VOXEL_ORDER,
        "pad2": VOXEL_ORDER,
        "image_orientation_patient": np.array(IMAGE_ORIENTATION_PATIENT,
                                              dtype="<f4"),
        "pad1": b"",
        "invert_x": 0,
        "invert_y": 0,
        "invert_z": 0,
        "swap_xy": 0,
        "swap_yz": 0,
        "swap_zx": 0,
        "n_count": n_fibers,
        "version": VERSION,
        "hdr_size": HEADER_SIZE,
    }
    return StreamlineHeader(fields=fields)


def encode_streamlines(
    reference: VolumeHeader,
    fibers: Sequence[Fiber],
) -> tuple[StreamlineHeader, bytes]:
    """Encode voxel-space fibers as a TrackVis byte stream.

    Args:
        reference: Header of the volume the fibers were sampled on; supplies
            extents, voxel size and the voxel-to-world rows.
        fibers: Sequence of (n, 3) integer voxel positions.

    Returns:
        (header, data) where ``data`` includes the encoded header.
    """
    header = build_streamline_header(reference, len(fibers))
    voxel_size = header.voxel_size
    writer = FieldWriter()
    for fiber in fibers:
        points = np.asarray(fiber).reshape(-1, 3)
        writer.write(_COUNT, len(points))
        writer.write_array("<f4", voxel_to_mm(points, voxel_size))
    return header, write_table(header.fields, TRACKVIS_HEADER) + writer.getvalue()


def read_streamlines(path: str | Path) -> tuple[StreamlineHeader, list[Fiber]]:
    """Read and decode a TrackVis file."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise IoError(f"Could not read streamlines {path}: {exc}") from exc
    try:
        return decode_streamlines(data)
    except FormatError as exc:
        raise FormatError(f"{path}: {exc}") from exc


def write_streamlines(
    path: str | Path,
    reference: VolumeHeader,
    fibers: Sequence[Fiber],
) -> StreamlineHeader:
    """Encode fibers against ``reference`` and write them to ``path``."""
    path = Path(path)
    header, data = encode_streamlines(reference, fibers)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise IoError(f"Could not write streamlines {path}: {exc}") from exc
    return header
