"""Shared pytest fixtures: installations, component archives and catalogs."""

import json
import zipfile
from pathlib import Path

import pytest
from graal_updater import ComponentRegistry
from graal_updater import compute_checksum
from graal_updater.registry import STORAGE_RELATIVE_PATH
from graal_updater.utils import sha256_file

RELEASE = 'GRAALVM_VERSION="0.33-dev"\nOS_NAME="linux"\nOS_ARCH="amd64"\n'


def build_archive(
    path: Path,
    component_id: str,
    version: str = "1.0.0",
    files: dict[str, bytes] | None = None,
    requires: dict[str, str] | None = None,
    shared: tuple[str, ...] = (),
    modes: dict[str, int] | None = None,
    name: str = "",
    post_install: str | None = None,
) -> Path:
    """Write a component archive with a META-INF/component.toml descriptor."""
    short = component_id.split(".")[-1]
    if files is None:
        files = {
            f"bin/{short}": b"#!/bin/sh\necho " + short.encode() + b"\n",
            f"languages/{short}/lib{short}.so": f"{component_id} {version}".encode(),
        }
    modes = modes or {f"bin/{short}": 0o755}

    lines = ["[component]", f'id = "{component_id}"', f'version = "{version}"']
    if name:
        lines.append(f'name = "{name}"')
    if post_install:
        lines.append(f'post_install = "{post_install}"')
    if shared:
        lines.append("shared = [" + ", ".join(f'"{p}"' for p in shared) + "]")
    lines.append("")
    lines.append("[component.requires]")
    for key, value in (requires or {"graalvm_version": "0.33"}).items():
        lines.append(f'{key} = "{value}"')

    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("META-INF/component.toml", "\n".join(lines) + "\n")
        for file_path, data in files.items():
            info = zipfile.ZipInfo(file_path)
            info.external_attr = (modes.get(file_path, 0o644) & 0xFFFF) << 16
            zf.writestr(info, data)
    return path


def catalog_document(components: list[dict], required_version: str = "0.33") -> dict:
    document = {"requires": {"graalvm_version": required_version}, "components": components}
    document["checksum"] = compute_checksum(document)
    return document


@pytest.fixture
def graal_home(tmp_path: Path) -> Path:
    """A minimal base installation with a release file."""
    home = tmp_path / "graalvm"
    home.mkdir()
    (home / "release").write_text(RELEASE)
    return home


@pytest.fixture
def registry(graal_home: Path) -> ComponentRegistry:
    return ComponentRegistry(graal_home / STORAGE_RELATIVE_PATH, graal_home)


@pytest.fixture
def make_archive(tmp_path: Path):
    """Factory writing component archives under tmp_path/archives."""
    archives = tmp_path / "archives"

    def factory(component_id: str, version: str = "1.0.0", **kwargs) -> Path:
        return build_archive(archives / f"{component_id}-{version}.zip", component_id, version, **kwargs)

    return factory


@pytest.fixture
def catalog_entry():
    """Factory for catalog entries pointing at local archives."""

    def factory(archive: Path, component_id: str, version: str = "1.0.0", **extra) -> dict:
        entry = {
            "id": component_id,
            "version": version,
            "requires": {"graalvm_version": "0.33"},
            "url": archive.as_uri(),
            "checksum": sha256_file(archive),
        }
        entry.update(extra)
        return entry

    return factory


@pytest.fixture
def write_catalog(tmp_path: Path):
    """Factory writing a checksummed catalog document; returns its path."""

    def factory(components: list[dict], required_version: str = "0.33", name: str = "catalog.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(catalog_document(components, required_version), indent=2))
        return path

    return factory


def tree_snapshot(root: Path) -> dict[str, bytes | None]:
    """Relative path -> contents (None for directories) of everything under root."""
    return {
        str(p.relative_to(root)): (p.read_bytes() if p.is_file() else None) for p in sorted(root.rglob("*"))
    }


@pytest.fixture
def snapshot():
    return tree_snapshot


@pytest.fixture
def make_catalog_document():
    return catalog_document
