"""
Unit tests for the install pipeline.

Downloads are served by responses; archives are built in memory.
"""

import hashlib
import threading

import pytest
import requests
import responses

from goswitch.core.catalog import ReleaseCatalog, ReleaseNotFoundError
from goswitch.core.install_pipeline import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
    InstallCancelledError,
    InstallPipeline,
    InvalidInstallError,
    PathTraversalError,
    is_valid_goroot,
    validate_goroot,
)
from goswitch.core.interfaces import IReleaseProvider
from goswitch.core.models import InstallState
from goswitch.core.version_registry import VersionRegistry


class StaticProvider(IReleaseProvider):
    def __init__(self, releases):
        self.releases = releases

    def fetch_releases(self):
        return list(self.releases)


class FakeResponse:
    """只返回部分内容的响应，用于模拟连接提前关闭。"""

    def __init__(self, body, content_length):
        self.body = body
        self.headers = {"content-length": str(content_length)}
        self.status_code = 200

    def raise_for_status(self):
        pass

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture
def archive(go_zip):
    return go_zip("1.21.0")


@pytest.fixture
def descriptor(archive, descriptor_factory):
    return descriptor_factory(archive)


@pytest.fixture
def registry(config_manager):
    return VersionRegistry(config_manager)


@pytest.fixture
def pipeline(config_manager, registry, descriptor):
    catalog = ReleaseCatalog(StaticProvider([descriptor]), config_manager.catalog_cache_file)
    return InstallPipeline(config_manager, catalog, registry)


def _serve(descriptor, body, status=200):
    responses.add(
        responses.GET,
        descriptor.download_url,
        body=body,
        status=status,
        headers={"content-length": str(len(body))},
    )


class TestAcquire:
    """安装包获取与校验。"""

    @responses.activate
    def test_download_and_verify(self, pipeline, descriptor, archive):
        _serve(descriptor, archive)
        progress = []

        path = pipeline.acquire(descriptor, progress_callback=lambda done, total: progress.append((done, total)))

        assert path.name == "go1.21.0.windows-amd64.zip"
        assert path.read_bytes() == archive
        assert not path.with_name(path.name + ".part").exists()
        assert progress[-1] == (len(archive), len(archive))

    @responses.activate
    def test_cached_archive_skips_network(self, pipeline, descriptor, archive, config_manager):
        config_manager.download_dir.mkdir(parents=True)
        (config_manager.download_dir / descriptor.filename).write_bytes(archive)

        path = pipeline.acquire(descriptor)

        assert path.read_bytes() == archive
        assert len(responses.calls) == 0

    @responses.activate
    def test_corrupt_cache_is_redownloaded(self, pipeline, descriptor, archive, config_manager):
        config_manager.download_dir.mkdir(parents=True)
        (config_manager.download_dir / descriptor.filename).write_bytes(b"corrupt")
        _serve(descriptor, archive)

        path = pipeline.acquire(descriptor)

        assert path.read_bytes() == archive
        assert len(responses.calls) == 1

    @responses.activate
    def test_fresh_download_checksum_mismatch(self, pipeline, descriptor, config_manager):
        _serve(descriptor, b"something else entirely")

        with pytest.raises(ChecksumMismatchError) as exc_info:
            pipeline.acquire(descriptor)

        assert exc_info.value.expected == descriptor.sha256
        assert exc_info.value.actual == hashlib.sha256(b"something else entirely").hexdigest()
        assert list(config_manager.download_dir.iterdir()) == []

    @responses.activate
    def test_http_error(self, pipeline, descriptor, config_manager):
        _serve(descriptor, b"", status=404)

        with pytest.raises(DownloadError):
            pipeline.acquire(descriptor)
        assert list(config_manager.download_dir.iterdir()) == []

    @responses.activate
    def test_connection_error(self, pipeline, descriptor):
        responses.add(responses.GET, descriptor.download_url, body=requests.exceptions.ConnectionError("reset"))

        with pytest.raises(DownloadError):
            pipeline.acquire(descriptor)

    def test_truncated_body(self, pipeline, descriptor, archive, config_manager, monkeypatch):
        monkeypatch.setattr(
            pipeline.session, "get", lambda *args, **kwargs: FakeResponse(archive[:100], len(archive))
        )

        with pytest.raises(DownloadError, match="不完整"):
            pipeline.acquire(descriptor)
        assert list(config_manager.download_dir.iterdir()) == []

    def test_passes_configured_timeouts(self, pipeline, descriptor, archive, monkeypatch):
        seen = {}

        def fake_get(url, **kwargs):
            seen.update(kwargs)
            return FakeResponse(archive, len(archive))

        monkeypatch.setattr(pipeline.session, "get", fake_get)
        pipeline.acquire(descriptor)

        assert seen["stream"] is True
        assert seen["timeout"] == (10, 300)

    @responses.activate
    def test_cancel_removes_partial_file(self, pipeline, descriptor, archive, config_manager):
        _serve(descriptor, archive)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(InstallCancelledError):
            pipeline.acquire(descriptor, cancel_event=cancel)
        assert list(config_manager.download_dir.iterdir()) == []


class TestExtract:
    """安全解压。"""

    def _write(self, tmp_path, data, name="archive.zip"):
        path = tmp_path / name
        path.write_bytes(data)
        return path

    def test_strips_wrapper_directory(self, pipeline, tmp_path, archive):
        target = tmp_path / "out" / "1.21.0-x64"

        pipeline.extract(self._write(tmp_path, archive), target)

        assert (target / "bin" / "go.exe").is_file()
        assert (target / "VERSION").read_text() == "go1.21.0\n"
        assert not (target / "go").exists()
        validate_goroot(target)

    def test_archive_without_wrapper(self, pipeline, tmp_path, go_zip):
        target = tmp_path / "out"

        pipeline.extract(self._write(tmp_path, go_zip(wrapper="")), target)

        assert is_valid_goroot(target)

    def test_existing_target_is_replaced(self, pipeline, tmp_path, archive):
        target = tmp_path / "out"
        target.mkdir()
        (target / "stale.txt").write_text("old")

        pipeline.extract(self._write(tmp_path, archive), target)

        assert not (target / "stale.txt").exists()
        assert (target / "bin" / "go.exe").exists()

    def test_parent_traversal_rejected(self, pipeline, tmp_path, raw_zip):
        work = tmp_path / "a" / "b"
        work.mkdir(parents=True)
        target = work / "out"
        target.mkdir()
        (target / "keep.txt").write_text("keep")
        data = raw_zip([("go/bin/go.exe", b"x"), ("../../escape.txt", b"pwned")])

        with pytest.raises(PathTraversalError):
            pipeline.extract(self._write(tmp_path, data), target)

        assert not (tmp_path / "a" / "escape.txt").exists()
        assert not (tmp_path / "escape.txt").exists()
        assert (target / "keep.txt").read_text() == "keep"
        assert not (target / "bin").exists()

    def test_escape_through_wrapper_rejected(self, pipeline, tmp_path, raw_zip):
        data = raw_zip([("go/bin/go.exe", b"x"), ("go/../../escape.txt", b"pwned")])

        with pytest.raises(PathTraversalError):
            pipeline.extract(self._write(tmp_path, data), tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.parametrize("name", ["/etc/passwd", "\\Windows\\evil.dll", "C:/Windows/evil.dll", "c:evil.txt"])
    def test_absolute_names_rejected(self, pipeline, tmp_path, raw_zip, name):
        data = raw_zip([("go/bin/go.exe", b"x"), (name, b"pwned")])

        with pytest.raises(PathTraversalError):
            pipeline.extract(self._write(tmp_path, data), tmp_path / "out")
        assert not (tmp_path / "out").exists()

    def test_corrupt_archive(self, pipeline, tmp_path):
        with pytest.raises(ExtractionError):
            pipeline.extract(self._write(tmp_path, b"not a zip"), tmp_path / "out")

    def test_cancel_removes_partial_target(self, pipeline, tmp_path, archive):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(InstallCancelledError):
            pipeline.extract(self._write(tmp_path, archive), tmp_path / "out", cancel_event=cancel)
        assert not (tmp_path / "out").exists()


class TestValidateGoroot:
    """安装目录完整性检查。"""

    def test_valid(self, tmp_path, goroot_factory):
        validate_goroot(goroot_factory(tmp_path / "go"))

    def test_missing_src(self, tmp_path, goroot_factory):
        root = goroot_factory(tmp_path / "go")
        (root / "src").rmdir()

        with pytest.raises(InvalidInstallError, match="src"):
            validate_goroot(root)

    def test_missing_executable(self, tmp_path, goroot_factory):
        root = goroot_factory(tmp_path / "go")
        (root / "bin" / "go.exe").unlink()

        assert not is_valid_goroot(root)

    def test_missing_directory(self, tmp_path):
        assert not is_valid_goroot(tmp_path / "nope")


class TestInstall:
    """完整安装流程。"""

    @responses.activate
    def test_install_registers_version(self, pipeline, descriptor, archive, registry, config_manager):
        _serve(descriptor, archive)

        installed = pipeline.install("1.21.0", "x64")

        assert pipeline.state is InstallState.REGISTERED
        assert installed.path == str(config_manager.versions_dir / "1.21.0-x64")
        assert is_valid_goroot(installed.path)
        assert registry.get("1.21.0", "x64") == installed

    def test_unknown_version(self, pipeline, registry):
        with pytest.raises(ReleaseNotFoundError):
            pipeline.install("1.99.0", "x64")
        assert pipeline.state is InstallState.NOT_RESOLVED
        assert registry.list_versions() == []

    @responses.activate
    def test_incomplete_archive_is_not_registered(self, config_manager, registry, raw_zip,
                                                   descriptor_factory):
        data = raw_zip([("go/bin/go.exe", b"x"), ("go/src/a.go", b"package a")])
        descriptor = descriptor_factory(data)
        catalog = ReleaseCatalog(StaticProvider([descriptor]), config_manager.catalog_cache_file)
        pipeline = InstallPipeline(config_manager, catalog, registry)
        _serve(descriptor, data)

        with pytest.raises(InvalidInstallError, match="pkg"):
            pipeline.install("1.21.0", "x64")

        assert pipeline.state is InstallState.ARTIFACT_READY
        assert not (config_manager.versions_dir / "1.21.0-x64").exists()
        assert registry.list_versions() == []
