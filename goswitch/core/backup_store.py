"""
环境变量备份模块。

在修改系统环境变量之前把 GOROOT、GOARCH、PATH 的原值写成带时间戳的
JSON 文件，供回滚使用。备份文件不会被自动删除。
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional

from goswitch.utils.logger import get_logger
from goswitch.core.config_manager import atomic_save_json
from goswitch.core.models import EnvSnapshot

logger = get_logger()

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
BACKUP_PREFIX = "env_backup_"
BACKUP_SUFFIX = ".json"


class BackupStoreError(Exception):
    """备份存储错误异常。"""
    pass


class SnapshotWriteError(BackupStoreError):
    """快照无法持久化写入异常。"""
    pass


class NoBackupAvailableError(BackupStoreError):
    """没有可用的有效备份异常。"""
    pass


class BackupStore:
    """
    环境变量备份存储类。

    文件名为 env_backup_<timestamp>.json，时间戳定宽，按字典序排序即按
    时间排序；同一微秒内的重复时间戳会顺延一微秒。
    """

    def __init__(self, backup_dir: Path, clock: Callable[[], datetime] = datetime.now):
        """
        初始化备份存储。

        参数:
            backup_dir: 备份目录
            clock: 当前时间函数，测试时可替换
        """
        self.backup_dir = Path(backup_dir)
        self._clock = clock
        self._last_timestamp: Optional[datetime] = None

    def _path_for(self, timestamp: str) -> Path:
        return self.backup_dir / f"{BACKUP_PREFIX}{timestamp}{BACKUP_SUFFIX}"

    def _next_timestamp(self) -> str:
        moment = self._clock()
        if self._last_timestamp is not None and moment <= self._last_timestamp:
            moment = self._last_timestamp + timedelta(microseconds=1)
        while self._path_for(moment.strftime(TIMESTAMP_FORMAT)).exists():
            moment += timedelta(microseconds=1)
        self._last_timestamp = moment
        return moment.strftime(TIMESTAMP_FORMAT)

    def write_snapshot(self, install_root: str, architecture: str, search_path: str) -> EnvSnapshot:
        """
        写入一份环境变量快照。

        数据先写入临时文件并 fsync，再原子重命名为最终文件名。

        参数:
            install_root: GOROOT 原值
            architecture: GOARCH 原值
            search_path: PATH 原值

        返回:
            写入的快照

        抛出:
            SnapshotWriteError: 无法持久化写入
        """
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            timestamp = self._next_timestamp()
            backup_file = self._path_for(timestamp)
            snapshot = EnvSnapshot(
                timestamp=timestamp,
                install_root=install_root or "",
                architecture=architecture or "",
                search_path=search_path or "",
                backup_file=str(backup_file),
            )
            atomic_save_json(backup_file, snapshot.to_dict(), indent=4, fsync=True)
        except OSError as e:
            logger.error(f"写入环境变量备份失败: {e}")
            raise SnapshotWriteError(f"无法写入环境变量备份到 {self.backup_dir}: {e}") from e

        logger.info(f"环境变量已备份到: {backup_file}")
        if not snapshot.is_valid:
            logger.warning(f"备份 {backup_file} 中有空值，回滚时不会被选用")
        return snapshot

    def load(self, path: Path) -> EnvSnapshot:
        """
        读取一个快照文件。

        抛出:
            BackupStoreError: 文件无法读取或格式无效
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise BackupStoreError(f"无法读取备份文件 {path}: {e}") from e
        if not isinstance(data, dict):
            raise BackupStoreError(f"备份文件 {path} 格式无效")
        return EnvSnapshot.from_dict(data, backup_file=str(path))

    def list_snapshots(self) -> List[EnvSnapshot]:
        """
        按时间戳升序列出所有可读的快照，无法读取的文件记录日志后跳过。
        """
        if not self.backup_dir.is_dir():
            return []

        snapshots = []
        for path in sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*{BACKUP_SUFFIX}")):
            try:
                snapshots.append(self.load(path))
            except BackupStoreError as e:
                logger.warning(f"跳过无法读取的备份: {e}")
        snapshots.sort(key=lambda s: s.timestamp)
        return snapshots

    def latest(self) -> EnvSnapshot:
        """
        返回时间戳最大的有效快照。

        抛出:
            NoBackupAvailableError: 没有有效快照
        """
        valid = [s for s in self.list_snapshots() if s.is_valid]
        if not valid:
            raise NoBackupAvailableError(f"{self.backup_dir} 中没有可用的环境变量备份")
        return max(valid, key=lambda s: s.timestamp)
