"""パート分割と転送設定のテスト"""
import pytest

from s3_mover.core.transfer import (
    DEFAULT_DOWNLOAD_PART_SIZE, DEFAULT_PART_SIZE, TransferConfigManager, plan_parts,
)
from s3_mover.models.config import MiB, PART_MAX_SIZE, PART_MIN_SIZE, TransferOptions


@pytest.mark.parametrize("size,part_size", [
    (1, 1), (10, 3), (9, 3), (262_144_000, 100 * MiB), (100 * MiB, 100 * MiB),
    (100 * MiB + 1, 100 * MiB), (5 * MiB - 7, MiB),
])
def test_parts_partition_the_object(size, part_size):
    parts = plan_parts(size, part_size)

    assert len(parts) == -(-size // part_size)
    assert sum(part.size for part in parts) == size
    assert parts[0].range_start == 0
    assert parts[-1].range_end == size - 1
    for previous, current in zip(parts, parts[1:]):
        assert current.range_start == previous.range_end + 1
    assert [part.index for part in parts] == list(range(len(parts)))


def test_last_part_holds_remainder():
    parts = plan_parts(250 * MiB, 100 * MiB)
    assert [part.size for part in parts] == [100 * MiB, 100 * MiB, 50 * MiB]
    assert parts[-1].byte_range == f"bytes={200 * MiB}-{250 * MiB - 1}"
    assert parts[-1].part_number == 3

    exact = plan_parts(200 * MiB, 100 * MiB)
    assert [part.size for part in exact] == [100 * MiB, 100 * MiB]


def test_empty_object_has_no_parts():
    assert plan_parts(0, MiB) == []
    with pytest.raises(ValueError):
        plan_parts(10, 0)


def test_part_size_defaults_and_clamping():
    assert TransferConfigManager.part_size(TransferOptions()) == DEFAULT_PART_SIZE
    assert TransferConfigManager.part_size(TransferOptions(), download=True) == DEFAULT_DOWNLOAD_PART_SIZE
    assert TransferConfigManager.part_size(TransferOptions(part_size=10)) == PART_MIN_SIZE
    assert TransferConfigManager.part_size(TransferOptions(part_size=10 ** 12)) == PART_MAX_SIZE
    assert TransferConfigManager.part_size(TransferOptions(part_size=8 * MiB)) == 8 * MiB


def test_invalid_part_size_falls_back_to_default():
    assert TransferOptions(part_size="abc").part_size is None
    assert TransferOptions(part_size=-5).part_size is None
    assert TransferConfigManager.part_size(TransferOptions(part_size="abc")) == DEFAULT_PART_SIZE


def test_thread_num_clamping():
    assert TransferConfigManager.thread_num(TransferOptions(thread_num=1000)) == 500
    assert TransferConfigManager.thread_num(TransferOptions(thread_num=8), task_count=3) == 3
    assert TransferConfigManager.thread_num(TransferOptions(thread_num=8), task_count=0) == 1
    assert TransferConfigManager.thread_num(TransferOptions(thread_num="x")) == 10
