"""転送サイズ・並列数の設定管理"""
from typing import List, Optional

from ..models.config import (
    MiB, PART_MAX_SIZE, PART_MIN_SIZE, THREAD_MAX_NUM, THREAD_MIN_NUM, TransferOptions,
)
from ..models.results import PartSpec
from ..utils.logger import LoggerManager

DEFAULT_PART_SIZE = 100 * MiB
DEFAULT_DOWNLOAD_PART_SIZE = 1 * MiB
DEFAULT_THREAD_NUM = 10


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


def plan_parts(total_size: int, part_size: int) -> List[PartSpec]:
    """[0, total_size) を part_size ごとに連続分割する

    最終パートは余り（余りが0なら満杯の1パート）。
    """
    if part_size <= 0:
        raise ValueError(f"part_size must be positive: {part_size}")
    if total_size <= 0:
        return []

    count = -(-total_size // part_size)
    parts = []
    for index in range(count):
        start = index * part_size
        end = min(start + part_size, total_size) - 1
        parts.append(PartSpec(index=index, range_start=start, range_end=end, size=end - start + 1))
    return parts


class TransferConfigManager:
    """転送設定の管理"""

    @staticmethod
    def part_size(options: TransferOptions, download: bool = False) -> int:
        """パートサイズを [PART_MIN_SIZE, PART_MAX_SIZE] に収める"""
        default = DEFAULT_DOWNLOAD_PART_SIZE if download else DEFAULT_PART_SIZE
        if options.part_size is None:
            return default
        size = clamp(options.part_size, PART_MIN_SIZE, PART_MAX_SIZE)
        if size != options.part_size:
            LoggerManager.get_logger().warning(
                f"part_size {options.part_size} out of range, using {size}"
            )
        return size

    @staticmethod
    def thread_num(options: TransferOptions, task_count: Optional[int] = None) -> int:
        """並列数を [THREAD_MIN_NUM, THREAD_MAX_NUM] と [1, task_count] に収める"""
        value = options.thread_num if options.thread_num is not None else DEFAULT_THREAD_NUM
        value = clamp(value, THREAD_MIN_NUM, THREAD_MAX_NUM)
        if task_count is not None:
            value = clamp(value, 1, max(task_count, 1))
        return value
