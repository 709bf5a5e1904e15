"""
环境变量回滚模块。
"""

from goswitch.utils.logger import get_logger
from goswitch.core.backup_store import BackupStore, BackupStoreError
from goswitch.core.env_mutator import EnvironmentMutator
from goswitch.core.models import EnvSnapshot

logger = get_logger()


class RollbackEngine:
    """
    回滚引擎类。

    按快照中的值原样写回 GOROOT、GOARCH、PATH，不重新推导，也不检查
    安装目录是否仍然存在。写入经过与 apply 相同的补偿逻辑。
    """

    def __init__(self, mutator: EnvironmentMutator, backup_store: BackupStore):
        self.mutator = mutator
        self.backup_store = backup_store

    def restore(self, snapshot: EnvSnapshot) -> EnvSnapshot:
        """
        把系统环境恢复为指定快照。

        参数:
            snapshot: 要恢复的快照

        返回:
            恢复所用的快照

        抛出:
            BackupStoreError: 快照无效
            PermissionDeniedError: 没有写权限
            MutationPartialFailureError: 写入中途失败（已补偿）
        """
        if not snapshot.is_valid:
            raise BackupStoreError(f"备份 {snapshot.backup_file or snapshot.timestamp} 不完整，无法恢复")

        self.mutator.store.check_write_access()
        originals = self.mutator.read_current()
        logger.info(f"正在从备份 {snapshot.backup_file} 恢复环境变量")
        self.mutator.write_variables(snapshot.env_values(), originals)
        self.mutator.broadcast()
        logger.info(f"已恢复到 {snapshot.timestamp} 的环境变量")
        return snapshot

    def rollback(self) -> EnvSnapshot:
        """
        恢复到最新的有效快照。

        抛出:
            NoBackupAvailableError: 没有有效快照
        """
        return self.restore(self.backup_store.latest())
