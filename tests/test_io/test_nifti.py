"""Tests for the NIfTI-1 volume codec."""

import numpy as np
import pytest

from pytractparc.errors import FormatError, IoError, PreconditionViolation
from pytractparc.io.nifti import (
    HEADER_SIZE,
    NIFTI1_HEADER,
    build_volume_header,
    decode_volume,
    empty_grid,
    encode_volume,
    read_volume,
    write_volume,
)
from pytractparc.io.fields import read_table, table_size, write_table


def _patched(header, **changes):
    fields = dict(header.fields)
    fields.update(changes)
    return write_table(fields, NIFTI1_HEADER)


def test_round_trip_is_exact(rng):
    header = build_volume_header((4, 3, 2, 2), voxel_size=(1.5, 2.0, 2.5))
    grid = rng.standard_normal((2, 2, 3, 4)).astype(np.float32)
    data = encode_volume(header, grid)
    decoded_header, decoded_grid = decode_volume(data)
    np.testing.assert_array_equal(decoded_grid, grid)
    assert decoded_grid.dtype == np.float32
    assert encode_volume(decoded_header, decoded_grid) == data


def test_encoded_layout(small_header):
    """Header, one zero padding float, then x fastest and t slowest."""
    grid = np.arange(27, dtype=np.float32).reshape(1, 3, 3, 3)
    data = encode_volume(small_header, grid)
    assert len(data) == HEADER_SIZE + 4 * (1 + 27)
    values = np.frombuffer(data, dtype="<f4", offset=HEADER_SIZE)
    assert values[0] == 0.0
    # grid[0, z=0, y=0, x=1] is the second voxel in the stream
    assert values[2] == grid[0, 0, 0, 1]
    assert values[4] == grid[0, 0, 1, 0]
    assert values[10] == grid[0, 1, 0, 0]


def test_decode_discards_padding_float(small_header):
    data = bytearray(encode_volume(small_header, np.zeros((1, 3, 3, 3),
                                                         dtype=np.float32)))
    data[HEADER_SIZE:HEADER_SIZE + 4] = np.float32(99.0).tobytes()
    _, grid = decode_volume(bytes(data))
    assert not np.any(grid == 99.0)


def test_header_fields_decoded(small_header):
    header, grid = decode_volume(
        encode_volume(small_header, empty_grid(small_header)))
    assert header.sizeof_hdr == 348
    assert header.extents == (3, 3, 3, 1)
    assert header.grid_shape == (1, 3, 3, 3)
    np.testing.assert_array_equal(header.voxel_size, [1.0, 1.0, 1.0])
    assert header.magic == b"n+1\x00"
    assert grid.shape == (1, 3, 3, 3)


def test_grid_independent_of_header(small_header):
    data = encode_volume(small_header, empty_grid(small_header))
    header, grid = decode_volume(data)
    grid[:] = 5.0
    assert header.extents == (3, 3, 3, 1)
    assert write_table(header.fields, NIFTI1_HEADER) == data[:HEADER_SIZE]


def test_short_input_raises_format_error():
    with pytest.raises(FormatError, match="header bytes"):
        decode_volume(b"\x00" * 100)


def test_wrong_header_size_raises_only_format_error(small_header):
    data = _patched(small_header, sizeof_hdr=540) + b"\x00" * 4 * 28
    with pytest.raises(FormatError, match="Wrong header size") as excinfo:
        decode_volume(data)
    assert type(excinfo.value) is FormatError
    assert not isinstance(excinfo.value, (IoError, PreconditionViolation))


def test_wrong_magic_raises_format_error(small_header):
    data = _patched(small_header, magic=b"XXXX") + b"\x00" * 4 * 28
    with pytest.raises(FormatError, match="magic"):
        decode_volume(data)


def test_non_float_datatype_raises_format_error(small_header):
    data = _patched(small_header, datatype=4) + b"\x00" * 4 * 28
    with pytest.raises(FormatError, match="datatype"):
        decode_volume(data)


def test_misaligned_data_raises_format_error(small_header):
    data = encode_volume(small_header, empty_grid(small_header)) + b"\x00"
    with pytest.raises(FormatError, match="multiple of 4"):
        decode_volume(data)


def test_voxel_count_mismatch_raises_format_error(small_header):
    data = encode_volume(small_header, empty_grid(small_header))
    with pytest.raises(FormatError, match="Expected 28 floats"):
        decode_volume(data[:-4])


def test_encode_shape_mismatch_raises_precondition(small_header):
    with pytest.raises(PreconditionViolation):
        encode_volume(small_header, np.zeros((1, 2, 3, 3), dtype=np.float32))


def test_empty_grid_shape(small_header):
    grid = empty_grid(small_header)
    assert grid.shape == (1, 3, 3, 3)
    assert grid.dtype == np.float32
    assert not grid.any()


def test_three_dimensional_header_has_single_frame():
    header = build_volume_header((5, 4, 3))
    assert header.extents == (5, 4, 3, 1)
    assert int(header.dim[0]) == 3


def test_write_and_read_volume(tmp_path, small_header, label_grid):
    path = tmp_path / "sub" / "dir" / "labels.nii"
    write_volume(path, small_header, label_grid)
    assert path.exists()
    _, grid = read_volume(path)
    np.testing.assert_array_equal(grid, label_grid)


def test_read_missing_volume_raises_io_error(tmp_path):
    with pytest.raises(IoError, match="nonexistent.nii"):
        read_volume(tmp_path / "nonexistent.nii")


def test_read_volume_error_names_file(tmp_path):
    path = tmp_path / "broken.nii"
    path.write_bytes(b"\x00" * 10)
    with pytest.raises(FormatError, match="broken.nii"):
        read_volume(path)


def test_reads_nibabel_written_file(tmp_path, rng):
    """A float32 .nii written by nibabel decodes to the same voxels."""
    nib = pytest.importorskip("nibabel")
    data = rng.standard_normal((4, 3, 2)).astype(np.float32)
    affine = np.diag([2.0, 2.0, 2.0, 1.0])
    path = tmp_path / "ref.nii"
    nib.save(nib.Nifti1Image(data, affine), str(path))

    header, grid = read_volume(path)
    assert header.extents == (4, 3, 2, 1)
    np.testing.assert_array_equal(grid[0], data.T)
    np.testing.assert_array_almost_equal(header.voxel_size, [2.0, 2.0, 2.0])


def test_written_file_loads_in_nibabel(tmp_path, rng):
    nib = pytest.importorskip("nibabel")
    header = build_volume_header((4, 3, 2), voxel_size=(1.0, 2.0, 3.0))
    grid = rng.standard_normal((1, 2, 3, 4)).astype(np.float32)
    path = tmp_path / "out.nii"
    write_volume(path, header, grid)

    img = nib.load(str(path))
    assert img.shape == (4, 3, 2)
    np.testing.assert_array_equal(np.asarray(img.dataobj), grid[0].T)
    np.testing.assert_array_almost_equal(img.header.get_zooms(), (1.0, 2.0, 3.0))


def test_header_table_is_348_bytes():
    assert table_size(NIFTI1_HEADER) == HEADER_SIZE


def test_axes_beyond_dim0_are_singleton(small_header):
    """A 3D header with a stale dim[4] still describes one frame."""
    header = small_header.copy()
    header.fields["dim"][4] = 5
    assert header.extents == (3, 3, 3, 1)
    assert header.grid_shape == (1, 3, 3, 3)

    data = encode_volume(header, np.ones((1, 3, 3, 3), dtype=np.float32))
    decoded_header, grid = decode_volume(data)
    assert int(decoded_header.dim[4]) == 5
    assert grid.shape == (1, 3, 3, 3)


def test_dim_decodes_unsigned(small_header):
    header = small_header.copy()
    header.fields["dim"][1] = 40000
    raw = write_table(header.fields, NIFTI1_HEADER)
    decoded = read_table(raw, NIFTI1_HEADER)
    assert int(decoded["dim"][1]) == 40000
