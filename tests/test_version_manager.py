"""
Unit tests for VersionManager.

The release catalog is fed by a static provider and downloads are served by
responses, so the whole install -> use -> rollback flow runs against an
in-memory environment store.
"""

import pytest
import responses

from goswitch.core.interfaces import IReleaseProvider
from goswitch.core.models import ActivationPolicy
from goswitch.core.version_manager import VersionInUseError, VersionManager
from goswitch.core.version_registry import NotInstalledError

ORIGINAL = {
    "GOROOT": r"C:\Program Files\Go",
    "GOARCH": "amd64",
    "PATH": r"C:\Program Files\Go\bin;C:\Windows\system32",
}


class StaticProvider(IReleaseProvider):
    def __init__(self, releases):
        self.releases = releases

    def fetch_releases(self):
        return list(self.releases)


class PassingVerifier:
    def __init__(self):
        self.verified = []

    def verify(self, installed, env_values):
        self.verified.append(installed.key)
        return f"go version go{installed.version}"


@pytest.fixture
def archive(go_zip):
    return go_zip("1.21.0")


@pytest.fixture
def descriptor(archive, descriptor_factory):
    return descriptor_factory(archive)


@pytest.fixture
def verifier():
    return PassingVerifier()


@pytest.fixture
def manager(config_manager, env_store, descriptor, verifier):
    env_store.values.update(ORIGINAL)
    return VersionManager(
        config_manager,
        env_store=env_store,
        provider=StaticProvider([descriptor]),
        verifier=verifier,
    )


@pytest.fixture
def register(manager, installed_factory):
    """在磁盘上创建安装目录并登记到注册表。"""

    def _register(version, arch="x64"):
        installed = installed_factory(version, arch)
        return manager.registry.add_version(version, arch, installed.path, install_date=installed.install_date)

    return _register


def _serve(descriptor, archive):
    responses.add(responses.GET, descriptor.download_url, body=archive,
                  headers={"content-length": str(len(archive))})


class TestInstall:
    """安装与激活策略。"""

    @responses.activate
    def test_never_does_not_touch_environment(self, manager, env_store, descriptor, archive):
        _serve(descriptor, archive)

        installed, snapshot = manager.install("1.21.0", "x64", policy=ActivationPolicy.NEVER)

        assert snapshot is None
        assert manager.registry.get("1.21.0", "x64") == installed
        assert manager.get_current() is None
        assert env_store.values == ORIGINAL

    @responses.activate
    def test_always_activates(self, manager, env_store, descriptor, archive, verifier):
        _serve(descriptor, archive)

        installed, snapshot = manager.install("go1.21.0", "amd64", policy="always")

        assert snapshot.env_values() == ORIGINAL
        assert env_store.values["GOROOT"] == installed.path
        assert manager.get_current() == installed
        assert verifier.verified == ["1.21.0-x64"]

    @responses.activate
    def test_ask_uses_confirm_callback(self, manager, env_store, descriptor, archive):
        _serve(descriptor, archive)
        asked = []

        def decline(installed):
            asked.append(installed.key)
            return False

        _, snapshot = manager.install("1.21.0", "x64", policy=ActivationPolicy.ASK, confirm=decline)

        assert asked == ["1.21.0-x64"]
        assert snapshot is None
        assert env_store.values == ORIGINAL

    @responses.activate
    def test_ask_without_confirm_does_not_activate(self, manager, descriptor, archive):
        _serve(descriptor, archive)

        _, snapshot = manager.install("1.21.0", "x64")

        assert snapshot is None
        assert manager.get_current() is None

    @responses.activate
    def test_registered_version_is_not_downloaded_again(self, manager, register):
        register("1.21.0")

        installed, _ = manager.install("1.21.0", "x64", policy=ActivationPolicy.NEVER)

        assert installed.key == "1.21.0-x64"
        assert len(responses.calls) == 0


class TestUse:
    """切换到已安装版本。"""

    def test_use_switches_environment(self, manager, env_store, register):
        installed = register("1.21.0")

        snapshot = manager.use("1.21.0", "x64")

        assert snapshot.install_root == ORIGINAL["GOROOT"]
        assert env_store.values["GOROOT"] == installed.path
        assert env_store.values["PATH"].startswith(installed.bin_dir + ";")
        assert manager.get_current() == installed

    def test_use_not_installed(self, manager, env_store):
        with pytest.raises(NotInstalledError):
            manager.use("1.99.0", "x64")
        assert env_store.writes == []

    def test_list_installed_flags(self, manager, register):
        register("1.20.0")
        current = register("1.21.0")
        manager.use("1.21.0", "x64")
        (manager.config_manager.versions_dir / "1.20.0-x64" / "src").rmdir()

        listing = {item["installed"].key: item for item in manager.list_installed()}

        assert listing[current.key]["current"] is True
        assert listing[current.key]["valid"] is True
        assert listing["1.20.0-x64"]["current"] is False
        assert listing["1.20.0-x64"]["valid"] is False


class TestRollback:
    """回滚与当前版本指针同步。"""

    def test_rollback_to_previous_managed_version(self, manager, env_store, register):
        first = register("1.20.0")
        register("1.21.0")
        manager.use("1.20.0", "x64")
        manager.use("1.21.0", "x64")

        manager.rollback()

        assert env_store.values["GOROOT"] == first.path
        assert manager.get_current() == first

    def test_rollback_to_unmanaged_clears_pointer(self, manager, env_store, register):
        register("1.21.0")
        manager.use("1.21.0", "x64")

        manager.rollback()

        assert env_store.values == ORIGINAL
        assert manager.get_current() is None

    def test_list_backups_newest_first(self, manager, register):
        register("1.20.0")
        register("1.21.0")
        manager.use("1.20.0", "x64")
        manager.use("1.21.0", "x64")

        backups = manager.list_backups()

        assert len(backups) == 2
        assert backups[0].timestamp > backups[1].timestamp
        assert backups[1].install_root == ORIGINAL["GOROOT"]


class TestUninstall:
    """卸载。"""

    def test_current_version_is_protected(self, manager, register):
        installed = register("1.21.0")
        manager.use("1.21.0", "x64")

        with pytest.raises(VersionInUseError):
            manager.uninstall("1.21.0", "x64")
        assert manager.registry.get("1.21.0", "x64") == installed

    def test_removes_directory_and_entry(self, manager, register):
        installed = register("1.20.0")

        manager.uninstall("1.20.0", "x64")

        assert manager.registry.get("1.20.0", "x64") is None
        assert not (manager.config_manager.versions_dir / "1.20.0-x64").exists()
        assert installed.key == "1.20.0-x64"

    def test_not_installed(self, manager):
        with pytest.raises(NotInstalledError):
            manager.uninstall("1.19.0", "x64")
