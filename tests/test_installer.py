"""Tests for the install/uninstall engine."""

import os

from graal_updater import ComponentDescriptor
from graal_updater import TransactionState
from graal_updater import install_component
from graal_updater import read_descriptor
from graal_updater import uninstall_component
from graal_updater.exceptions import ErrorKind
from graal_updater.installer import InstallTransaction
from graal_updater.utils import sha256_file


def _install(archive, home, registry, replace=False):
    return install_component(read_descriptor(archive), archive, home, registry, replace=replace)


def test_install_component_basic(make_archive, graal_home, registry):
    archive = make_archive("org.graalvm.ruby")

    result = _install(archive, graal_home, registry)

    assert result.ok
    assert result.state is TransactionState.COMMITTED
    assert result.error is None
    assert (graal_home / "bin" / "ruby").is_file()
    assert os.stat(graal_home / "bin" / "ruby").st_mode & 0o777 == 0o755
    assert (graal_home / "languages" / "ruby" / "libruby.so").read_bytes() == b"org.graalvm.ruby 1.0.0"
    assert not any(p.name.startswith(".gu-staging-") for p in graal_home.iterdir())


def test_install_records_manifest(make_archive, graal_home, registry):
    archive = make_archive("org.graalvm.ruby")

    result = _install(archive, graal_home, registry)

    component = registry.find("org.graalvm.ruby")
    assert component is not None
    assert result.installed == component
    assert component.file_paths() == {"bin/ruby", "languages/ruby/libruby.so"}
    for entry in component.files:
        assert entry.checksum == sha256_file(graal_home / entry.path)
    assert registry.verify() == []


def test_install_then_list_then_uninstall(make_archive, graal_home, registry, snapshot):
    before = snapshot(graal_home)
    archive = make_archive("org.graalvm.ruby", "1.0.0")

    _install(archive, graal_home, registry)
    listed = [(c.id, c.version) for c in registry.list_installed()]
    assert listed.count(("org.graalvm.ruby", "1.0.0")) == 1

    result = uninstall_component("org.graalvm.ruby", graal_home, registry)

    assert result.ok
    assert sorted(result.removed_files) == ["bin/ruby", "languages/ruby/libruby.so"]
    assert registry.list_installed() == []
    assert not (graal_home / "bin").exists()
    assert not (graal_home / "languages").exists()
    # Only the (now empty) registry directory remains
    after = {k: v for k, v in snapshot(graal_home).items() if not k.startswith("lib")}
    assert after == before


def test_uninstall_not_installed(graal_home, registry):
    result = uninstall_component("org.graalvm.ruby", graal_home, registry)

    assert not result.ok
    assert result.error.kind is ErrorKind.COMPONENT_NOT_FOUND
    assert not registry.storage_path.exists()


def test_install_already_installed(make_archive, graal_home, registry):
    archive = make_archive("org.graalvm.ruby")
    _install(archive, graal_home, registry)

    result = _install(archive, graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.COMPONENT_ALREADY_INSTALLED


def test_replace_upgrades_and_drops_stale_files(make_archive, graal_home, registry):
    _install(
        make_archive("org.graalvm.ruby", "1.0.0", files={"bin/ruby": b"v1", "lib/old.so": b"old"}),
        graal_home,
        registry,
    )

    result = _install(
        make_archive("org.graalvm.ruby", "2.0.0", files={"bin/ruby": b"v2", "lib/new.so": b"new"}),
        graal_home,
        registry,
        replace=True,
    )

    assert result.ok
    assert (graal_home / "bin" / "ruby").read_bytes() == b"v2"
    assert (graal_home / "lib" / "new.so").exists()
    assert not (graal_home / "lib" / "old.so").exists()
    component = registry.find("org.graalvm.ruby")
    assert component.version == "2.0.0"
    assert component.file_paths() == {"bin/ruby", "lib/new.so"}


def test_unowned_file_already_exists(make_archive, graal_home, registry, snapshot):
    (graal_home / "bin").mkdir()
    (graal_home / "bin" / "ruby").write_text("user file")
    before = snapshot(graal_home)

    result = _install(make_archive("org.graalvm.ruby"), graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.FILE_ALREADY_EXISTS
    assert result.error.exit_code == 2
    assert snapshot(graal_home) == before
    assert registry.list_installed() == []


def test_unowned_file_overwritten_with_replace(make_archive, graal_home, registry):
    (graal_home / "bin").mkdir()
    (graal_home / "bin" / "ruby").write_text("user file")

    result = _install(make_archive("org.graalvm.ruby"), graal_home, registry, replace=True)

    assert result.ok
    assert (graal_home / "bin" / "ruby").read_bytes().startswith(b"#!/bin/sh")


def test_conflicting_component(make_archive, graal_home, registry, snapshot):
    _install(make_archive("org.graalvm.ruby", files={"bin/polyglot": b"ruby"}), graal_home, registry)
    before = snapshot(graal_home)

    result = _install(
        make_archive("org.graalvm.python", files={"bin/polyglot": b"python", "bin/python": b"py"}),
        graal_home,
        registry,
        replace=True,
    )

    assert result.error.kind is ErrorKind.CONFLICTING_COMPONENT
    assert "org.graalvm.ruby" in result.error.message
    assert snapshot(graal_home) == before
    assert not registry.is_installed("org.graalvm.python")


def test_shared_files(make_archive, graal_home, registry):
    shared = {"lib/libcommon.so": b"common"}
    _install(
        make_archive("org.graalvm.ruby", files={**shared, "bin/ruby": b"r"}, shared=("lib/libcommon.so",)),
        graal_home,
        registry,
    )
    result = _install(
        make_archive("org.graalvm.python", files={**shared, "bin/python": b"p"}, shared=("lib/libcommon.so",)),
        graal_home,
        registry,
    )
    assert result.ok

    uninstall_component("org.graalvm.ruby", graal_home, registry)
    assert (graal_home / "lib" / "libcommon.so").exists()
    assert not (graal_home / "bin" / "ruby").exists()

    uninstall_component("org.graalvm.python", graal_home, registry)
    assert not (graal_home / "lib" / "libcommon.so").exists()


def test_shared_file_requires_both_sides(make_archive, graal_home, registry):
    _install(make_archive("org.graalvm.ruby", files={"lib/libcommon.so": b"c"}), graal_home, registry)

    result = _install(
        make_archive("org.graalvm.python", files={"lib/libcommon.so": b"c"}, shared=("lib/libcommon.so",)),
        graal_home,
        registry,
    )

    assert result.error.kind is ErrorKind.CONFLICTING_COMPONENT


def test_commit_failure_rolls_back(make_archive, graal_home, registry, snapshot, monkeypatch):
    """A denied rename mid-commit leaves the tree and registry untouched."""
    archive = make_archive(
        "org.graalvm.ruby",
        files={"bin/ruby": b"1", "languages/ruby/a.so": b"2", "languages/ruby/z.so": b"3"},
    )
    before = snapshot(graal_home)
    real_replace = os.replace

    def failing_replace(src, dst):
        if str(dst).endswith("z.so"):
            raise PermissionError(13, "Permission denied", str(dst))
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", failing_replace)

    result = _install(archive, graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.ACCESS_DENIED
    assert result.secondary_errors == []
    assert snapshot(graal_home) == before
    assert registry.list_installed() == []


def test_commit_failure_restores_replaced_files(make_archive, graal_home, registry, monkeypatch):
    _install(make_archive("org.graalvm.ruby", "1.0.0", files={"bin/ruby": b"v1", "lib/z.so": b"v1"}), graal_home, registry)
    real_replace = os.replace
    failed = []

    def failing_replace(src, dst):
        if str(dst).endswith("z.so") and ".gu-staging-" not in str(dst) and not failed:
            failed.append(dst)
            raise PermissionError(13, "Permission denied", str(dst))
        return real_replace(src, dst)

    monkeypatch.setattr(os, "replace", failing_replace)

    result = _install(
        make_archive("org.graalvm.ruby", "2.0.0", files={"bin/ruby": b"v2", "lib/z.so": b"v2"}),
        graal_home,
        registry,
        replace=True,
    )

    assert result.state is TransactionState.ROLLED_BACK
    assert (graal_home / "bin" / "ruby").read_bytes() == b"v1"
    assert (graal_home / "lib" / "z.so").read_bytes() == b"v1"
    assert registry.find("org.graalvm.ruby").version == "1.0.0"


def test_registry_write_failure_rolls_back(make_archive, graal_home, registry, snapshot, monkeypatch):
    before = snapshot(graal_home)

    def failing_record(descriptor, manifest):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(registry, "record_install", failing_record)

    result = _install(make_archive("org.graalvm.ruby"), graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.IO_ERROR
    assert snapshot(graal_home) == before


def test_staging_failure_touches_nothing(make_archive, graal_home, registry, snapshot, monkeypatch):
    before = snapshot(graal_home)
    archive = make_archive("org.graalvm.ruby")

    def interrupted(self, descriptor, archive):
        raise KeyboardInterrupt

    monkeypatch.setattr(InstallTransaction, "_stage_install", interrupted)

    result = _install(archive, graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.ABORTED
    assert result.error.exit_code == 4
    assert snapshot(graal_home) == before


def test_rollback_failure_is_secondary(make_archive, graal_home, registry, monkeypatch):
    archive = make_archive("org.graalvm.ruby", files={"bin/a": b"1", "bin/z": b"2"})
    real_replace = os.replace
    real_unlink = os.unlink

    def failing_replace(src, dst):
        if str(dst).endswith("bin/z"):
            raise PermissionError(13, "Permission denied", str(dst))
        return real_replace(src, dst)

    def failing_unlink(path, *args, **kwargs):
        if str(path).endswith("bin/a"):
            raise PermissionError(13, "Permission denied", str(path))
        return real_unlink(path, *args, **kwargs)

    monkeypatch.setattr(os, "replace", failing_replace)
    monkeypatch.setattr(os, "unlink", failing_unlink)

    result = _install(archive, graal_home, registry)

    assert result.error.kind is ErrorKind.ACCESS_DENIED
    assert any("bin/a" in message for message in result.secondary_errors)
    assert registry.list_installed() == []


def test_uninstall_missing_file_is_tolerated(make_archive, graal_home, registry):
    _install(make_archive("org.graalvm.ruby"), graal_home, registry)
    (graal_home / "bin" / "ruby").unlink()

    result = uninstall_component("org.graalvm.ruby", graal_home, registry)

    assert result.ok
    assert result.removed_files == ["languages/ruby/libruby.so"]
    assert not registry.is_installed("org.graalvm.ruby")


def test_uninstall_failure_keeps_registry(make_archive, graal_home, registry, monkeypatch):
    _install(make_archive("org.graalvm.ruby"), graal_home, registry)
    real_unlink = os.unlink

    def failing_unlink(path, *args, **kwargs):
        if str(path).endswith("libruby.so"):
            raise PermissionError(13, "Permission denied", str(path))
        return real_unlink(path, *args, **kwargs)

    monkeypatch.setattr(os, "unlink", failing_unlink)

    result = uninstall_component("org.graalvm.ruby", graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.ACCESS_DENIED
    assert registry.is_installed("org.graalvm.ruby")


def test_unsafe_component_id_is_rolled_back(make_archive, graal_home, registry, snapshot, tmp_path):
    """A descriptor built without the parsers still cannot escape the registry directory."""
    archive = make_archive("escaped", files={"bin/x": b"x"})
    descriptor = ComponentDescriptor(id="../../../escaped", version="1.0.0")
    before = snapshot(graal_home)

    result = install_component(descriptor, archive, graal_home, registry)

    assert result.state is TransactionState.ROLLED_BACK
    assert result.error.kind is ErrorKind.INVALID_METADATA
    assert snapshot(graal_home) == before
    assert not (tmp_path / "escaped.json").exists()
