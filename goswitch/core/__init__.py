"""
GoSwitch 核心模块。

提供版本目录、安装流水线、版本注册表、环境变量修改与回滚功能。
winreg 实现（env_manager）只在 Windows 上按需导入。
"""

from .interfaces import IConfigManager, IEnvironmentStore, IReleaseProvider
from .models import ActivationPolicy, InstallState, ReleaseDescriptor, InstalledVersion, EnvSnapshot
from .config_manager import ConfigManager, ConfigValidationError, ConfigLoadError, ConfigSaveError
from .remote_fetcher import GoReleaseFetcher, RemoteFetcherError, NetworkError, MirrorError, MirrorStatus
from .catalog import ReleaseCatalog, CatalogError, ReleaseNotFoundError
from .version_registry import VersionRegistry, VersionRegistryError, NotInstalledError, InvalidVersionPathError
from .install_pipeline import (
    InstallPipeline, InstallPipelineError, DownloadError, ChecksumMismatchError, ExtractionError,
    PathTraversalError, InvalidInstallError, InstallCancelledError, validate_goroot,
)
from .backup_store import BackupStore, BackupStoreError, SnapshotWriteError, NoBackupAvailableError
from .env_store import EnvStoreError, PermissionDeniedError, create_env_store
from .reg_command_store import RegCommandEnvStore
from .env_mutator import (
    EnvironmentMutator, ToolchainVerifier, EnvMutatorError, MutationPartialFailureError, VerificationFailedError,
)
from .rollback import RollbackEngine
from .version_manager import VersionManager, VersionManagerError, VersionInUseError, DeleteVersionError
from . import version_utils

__all__ = [
    "IConfigManager", "IEnvironmentStore", "IReleaseProvider",
    "ActivationPolicy", "InstallState", "ReleaseDescriptor", "InstalledVersion", "EnvSnapshot",
    "ConfigManager", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError",
    "GoReleaseFetcher", "RemoteFetcherError", "NetworkError", "MirrorError", "MirrorStatus",
    "ReleaseCatalog", "CatalogError", "ReleaseNotFoundError",
    "VersionRegistry", "VersionRegistryError", "NotInstalledError", "InvalidVersionPathError",
    "InstallPipeline", "InstallPipelineError", "DownloadError", "ChecksumMismatchError", "ExtractionError",
    "PathTraversalError", "InvalidInstallError", "InstallCancelledError", "validate_goroot",
    "BackupStore", "BackupStoreError", "SnapshotWriteError", "NoBackupAvailableError",
    "EnvStoreError", "PermissionDeniedError", "create_env_store",
    "RegCommandEnvStore",
    "EnvironmentMutator", "ToolchainVerifier", "EnvMutatorError", "MutationPartialFailureError",
    "VerificationFailedError",
    "RollbackEngine",
    "VersionManager", "VersionManagerError", "VersionInUseError", "DeleteVersionError",
    "version_utils",
]
