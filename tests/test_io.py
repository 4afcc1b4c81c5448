import os

import numpy as np
import pytest

from backprojection_toolkit.process_group import GroupContext, run_simulated_group
from backprojection_toolkit.projection_loader import read_file, load_projection_data, check_volume_memory
from backprojection_toolkit.geometry_reader import ScanConstants, load_global_data
from backprojection_toolkit.saving_utils import write_file, save_outputs


def _read(size, offset, filename, ranks=1):
    return run_simulated_group(ranks, lambda group: read_file(size, offset, filename, group), timeout=10)


# ======================================================================================
# Segment writer / reader
# ======================================================================================

def test_written_volume_reads_back_exactly(tmp_path):
    path = str(tmp_path / "volume.raw")
    data = np.random.default_rng(0).normal(size=64).astype(np.float32)
    write_file(data, 0, path)

    for out in _read(64, 0, path, ranks=2):
        np.testing.assert_array_equal(out, data)


def test_write_and_read_at_an_offset(tmp_path):
    path = str(tmp_path / "offset.raw")
    data = np.array([1.5, -2.25, 3.0], dtype=np.float32)
    write_file(data, 4, path)

    assert os.path.getsize(path) == (4 + 3) * 4
    np.testing.assert_array_equal(_read(3, 4, path)[0], data)
    np.testing.assert_array_equal(_read(4, 0, path)[0], np.zeros(4, dtype=np.float32))


def test_writer_truncates_existing_file(tmp_path):
    path = str(tmp_path / "trunc.raw")
    write_file(np.ones(10, dtype=np.float32), 0, path)
    write_file(np.ones(2, dtype=np.float32), 0, path)
    assert os.path.getsize(path) == 8


def test_reader_returns_fresh_arrays(tmp_path):
    path = str(tmp_path / "fresh.raw")
    write_file(np.arange(4, dtype=np.float32), 0, path)
    first, second = _read(4, 0, path, ranks=2)
    first[0] = 42.0
    assert second[0] == 0.0


def test_missing_input_file_is_an_io_error(tmp_path):
    with pytest.raises(OSError):
        _read(4, 0, str(tmp_path / "missing.bin"), ranks=2)


def test_short_read_is_an_io_error(tmp_path):
    path = str(tmp_path / "short.raw")
    write_file(np.arange(3, dtype=np.float32), 0, path)
    with pytest.raises(OSError):
        _read(4, 0, path)


def test_unwritable_output_is_an_io_error(tmp_path):
    with pytest.raises(OSError):
        write_file(np.ones(2, dtype=np.float32), 0, str(tmp_path / "no" / "such" / "dir" / "x.raw"))


# ======================================================================================
# Loader
# ======================================================================================

def test_load_global_data(make_dataset):
    V = 3
    combined = np.arange(4 * V * V, dtype=np.float32).reshape(4, V * V)
    root = make_dataset(V, np.zeros((1, 2, 2)), np.zeros((1, 12)), np.zeros((1, V * V)),
                        combined=combined, z_coords=[7.0, 8.0, 9.0])

    gdata = run_simulated_group(1, lambda group: load_global_data(V, root, group))[0]
    np.testing.assert_array_equal(gdata.combined_matrix, combined)
    np.testing.assert_array_equal(gdata.z_voxel_coords, [7.0, 8.0, 9.0])
    assert gdata.num_voxels == V
    assert not gdata.combined_matrix.flags.writeable


def test_load_projection_data_selects_the_projection(make_dataset):
    V = 2
    scan = ScanConstants(num_projections=3, detector_rows=2, detector_columns=3)
    projections = np.arange(3 * 6, dtype=np.float32).reshape(3, 2, 3)
    transforms = np.arange(3 * 12, dtype=np.float32).reshape(3, 12)
    weights = np.arange(3 * V * V, dtype=np.float32).reshape(3, V * V)
    root = make_dataset(V, projections, transforms, weights)

    def load(group):
        return load_projection_data(1, V, root, scan, group)

    for pdata in run_simulated_group(2, load, timeout=10):
        np.testing.assert_array_equal(pdata.projection, projections[1])
        np.testing.assert_array_equal(pdata.transform_matrix, transforms[1].reshape(3, 4))
        np.testing.assert_array_equal(pdata.volume_weight, weights[1])
        assert not pdata.projection.flags.writeable


def test_check_volume_memory_counts_the_final_volume_on_the_coordinator():
    coordinator, _ = check_volume_memory(16, GroupContext(0, 2))
    worker, _ = check_volume_memory(16, GroupContext(1, 2))
    assert worker == pytest.approx(16**3 * 4 / 1024**2)
    assert coordinator == pytest.approx(2 * worker)


# ======================================================================================
# Coordinator outputs
# ======================================================================================

def test_save_outputs_writes_volume_and_central_slice(tmp_path):
    recon = np.random.default_rng(1).uniform(size=(4, 4, 4)).astype(np.float32)
    output_file = str(tmp_path / "out" / "recon.raw")

    written = save_outputs(output_file, recon, save_central_slice=True)

    assert written[0] == output_file
    np.testing.assert_array_equal(np.fromfile(output_file, dtype=np.float32), recon.ravel())
    assert written[1].endswith("recon_central_slice_4x4.png")
    assert os.path.exists(written[1])


def test_save_outputs_without_output_file_writes_nothing(tmp_path):
    assert save_outputs(None, np.zeros((2, 2, 2), dtype=np.float32)) == []
    assert os.listdir(tmp_path) == []
