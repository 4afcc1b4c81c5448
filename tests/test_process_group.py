import dataclasses
import time

import numpy as np
import pytest

from backprojection_toolkit.process_group import (
    GroupContext,
    CollectiveMismatchError,
    ProcessGroup,
    run_simulated_group,
)
from backprojection_toolkit.saving_utils import write_file


def test_group_context_is_immutable_and_validated():
    ctx = GroupContext(rank=0, size=3)
    assert ctx.is_coordinator
    assert not GroupContext(rank=2, size=3).is_coordinator
    with pytest.raises(dataclasses.FrozenInstanceError):
        ctx.rank = 1
    with pytest.raises(ValueError):
        GroupContext(rank=3, size=3)
    with pytest.raises(ValueError):
        GroupContext(rank=0, size=0)


def test_every_member_gets_its_own_context():
    contexts = run_simulated_group(4, lambda group: group.context)
    assert contexts == [GroupContext(rank, 4) for rank in range(4)]


def test_sum_reduce_delivers_only_to_the_root():
    def reduce(group):
        local = np.full(5, group.context.rank + 1, dtype=np.float32)
        return group.sum_reduce(local)

    results = run_simulated_group(3, reduce, timeout=10)
    np.testing.assert_array_equal(results[0], np.full(5, 6.0, dtype=np.float32))
    assert results[1] is None and results[2] is None


def test_sum_reduce_to_another_root():
    def reduce(group):
        return group.sum_reduce(np.ones((2, 2), dtype=np.float32), root=1)

    results = run_simulated_group(2, reduce, timeout=10)
    assert results[0] is None
    np.testing.assert_array_equal(results[1], np.full((2, 2), 2.0))


def test_mismatched_read_arguments_fail_on_every_member(tmp_path):
    path = tmp_path / "data.bin"
    write_file(np.arange(8, dtype=np.float32), 0, path)

    def read_own_offset(group):
        return group.collective_read(path, group.context.rank, 2)

    with pytest.raises(CollectiveMismatchError):
        run_simulated_group(2, read_own_offset, timeout=10)


def test_mismatched_operations_fail():
    def mixed(group):
        if group.context.rank == 0:
            group.barrier()
        else:
            group.sum_reduce(np.zeros(3, dtype=np.float32))

    with pytest.raises(CollectiveMismatchError):
        run_simulated_group(2, mixed, timeout=10)


def test_skipped_collective_fails_fast_instead_of_hanging():
    def skipper(group):
        if group.context.rank == 1:
            return "left early"
        group.barrier()

    start = time.time()
    with pytest.raises(CollectiveMismatchError):
        run_simulated_group(3, skipper, timeout=30)
    assert time.time() - start < 10


def test_failing_member_releases_the_others_and_is_reported():
    def failing(group):
        if group.context.rank == 1:
            raise OSError("disk gone")
        group.barrier()

    start = time.time()
    with pytest.raises(OSError, match="disk gone"):
        run_simulated_group(3, failing, timeout=30)
    assert time.time() - start < 10


def test_matching_sequence_completes():
    def sequence(group):
        group.barrier()
        total = group.sum_reduce(np.ones(2, dtype=np.float32))
        group.barrier()
        return total

    results = run_simulated_group(4, sequence, timeout=10)
    np.testing.assert_array_equal(results[0], [4.0, 4.0])


def test_slow_members_without_timeout_complete():
    def slow(group):
        time.sleep(0.2 * (group.context.rank + 1))
        group.barrier()
        return group.sum_reduce(np.ones(3, dtype=np.float32))

    results = run_simulated_group(3, slow)
    np.testing.assert_array_equal(results[0], [3.0, 3.0, 3.0])


def test_short_collective_read_raises(tmp_path):
    path = tmp_path / "data.bin"
    write_file(np.arange(4, dtype=np.float32), 0, path)

    with pytest.raises(OSError, match="Short read"):
        run_simulated_group(2, lambda group: group.collective_read(path, 2, 5))


# ======================================================================================
# Process group contract
# ======================================================================================

def test_incomplete_process_group_cannot_be_instantiated():
    class ReadOnlyGroup(ProcessGroup):
        def collective_read(self, filename, offset, count):
            return np.zeros(count, dtype=np.float32)

    with pytest.raises(TypeError):
        ReadOnlyGroup()
