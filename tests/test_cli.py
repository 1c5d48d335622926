"""End-to-end tests for the gu command line."""

import pytest
import typer
from graal_updater.cli import _click_exceptions
from graal_updater.cli import app
from graal_updater.cli import main
from graal_updater.registry import STORAGE_RELATIVE_PATH
from graal_updater.registry import ComponentRegistry
from typer.testing import CliRunner


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    monkeypatch.delenv("GRAAL_HOME", raising=False)
    monkeypatch.delenv("GRAALVM_CATALOG", raising=False)
    monkeypatch.setenv("COLUMNS", "200")


@pytest.fixture
def gu(graal_home, capsys):
    """Run gu against the test installation; returns (exit code, stdout, stderr)."""

    def run(*args):
        code = main(["--home", str(graal_home), *args])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return run


def _installed(graal_home):
    return [c.id for c in ComponentRegistry(graal_home / STORAGE_RELATIVE_PATH, graal_home).list_installed()]


def test_missing_command(capsys):
    assert main([]) == 1
    assert "Missing command" in capsys.readouterr().err


def test_unknown_command(gu):
    code, _, err = gu("frobnicate")

    assert code == 1
    assert "frobnicate" in err


def test_unknown_option(gu):
    code, _, err = gu("--bogus", "list")

    assert code == 1
    assert "--bogus" in err


def test_usage_errors_match_typer_click():
    command = typer.main.get_command(app)

    with pytest.raises(_click_exceptions().UsageError):
        command.main(args=["frobnicate"], prog_name="gu", standalone_mode=False)


def test_home_not_configured(capsys):
    assert main(["list"]) == 1
    assert "GRAAL_HOME" in capsys.readouterr().err


def test_home_from_environment(graal_home, monkeypatch, capsys):
    monkeypatch.setenv("GRAAL_HOME", str(graal_home))

    assert main(["list"]) == 0
    assert "No components installed." in capsys.readouterr().out


def test_invalid_home(tmp_path, capsys):
    assert main(["--home", str(tmp_path), "list"]) == 3


def test_install_list_uninstall_files(gu, make_archive, graal_home):
    archive = make_archive("org.graalvm.ruby", "1.0.0", name="TruffleRuby")

    code, out, _ = gu("--files", str(archive), "install")
    assert code == 0
    assert "Installing TruffleRuby 1.0.0" in out
    assert (graal_home / "bin" / "ruby").exists()

    code, out, _ = gu("list")
    assert code == 0
    assert "org.graalvm.ruby" in out
    assert "1.0.0" in out

    code, out, _ = gu("-y", "uninstall", "org.graalvm.ruby")
    assert code == 0
    assert "Uninstalled org.graalvm.ruby" in out
    assert not (graal_home / "bin" / "ruby").exists()
    assert _installed(graal_home) == []


def test_install_several_files(gu, make_archive, graal_home):
    ruby = make_archive("org.graalvm.ruby")
    python = make_archive("org.graalvm.python")

    code, _, _ = gu("--files", f"{ruby},{python}", "install")

    assert code == 0
    assert _installed(graal_home) == ["org.graalvm.python", "org.graalvm.ruby"]


def test_install_with_multiple_sources(gu, make_archive, graal_home):
    archive = make_archive("org.graalvm.ruby")

    code, _, err = gu("--files", str(archive), "--catalog", "https://example.org/catalog.json", "install")

    assert code == 1
    assert "Only one installation source" in err
    assert _installed(graal_home) == []


def test_install_ids_with_files(gu, make_archive):
    code, _, err = gu("--files", str(make_archive("org.graalvm.ruby")), "install", "ruby")

    assert code == 1
    assert "cannot be combined" in err


def test_install_already_installed(gu, make_archive):
    archive = make_archive("org.graalvm.ruby")
    gu("--files", str(archive), "install")

    code, _, err = gu("--files", str(archive), "install")

    assert code == 3
    assert "already installed" in err


def test_install_replace(gu, make_archive, graal_home):
    gu("--files", str(make_archive("org.graalvm.ruby", "1.0.0")), "install")

    code, _, _ = gu("--files", str(make_archive("org.graalvm.ruby", "2.0.0")), "install", "--replace")

    assert code == 0
    assert (graal_home / "languages" / "ruby" / "libruby.so").read_bytes() == b"org.graalvm.ruby 2.0.0"


def test_install_over_existing_file(gu, make_archive, graal_home, snapshot):
    (graal_home / "bin").mkdir()
    (graal_home / "bin" / "ruby").write_text("mine")
    before = snapshot(graal_home)

    code, _, _ = gu("--files", str(make_archive("org.graalvm.ruby")), "install")

    assert code == 2
    assert snapshot(graal_home) == before


def test_install_unsupported_component(gu, make_archive, graal_home):
    archive = make_archive("org.graalvm.ruby", requires={"graalvm_version": "19.0"})

    code, _, err = gu("--files", str(archive), "install")

    assert code == 3
    assert "graalvm_version" in err
    assert not (graal_home / "bin").exists()


def test_install_missing_archive(gu, tmp_path):
    code, _, _ = gu("--files", str(tmp_path / "missing.zip"), "install")

    assert code == 2


def test_uninstall_not_installed(gu):
    code, _, err = gu("-y", "uninstall", "org.graalvm.ruby")

    assert code == 3
    assert "not installed" in err


def test_uninstall_without_ids(gu):
    code, _, err = gu("uninstall")

    assert code == 1
    assert "No components specified" in err


def test_uninstall_non_interactive_without_yes(gu, make_archive, graal_home):
    gu("--files", str(make_archive("org.graalvm.ruby")), "install")

    code, _, _ = gu("--non-interactive", "uninstall", "org.graalvm.ruby")

    assert code == 4
    assert _installed(graal_home) == ["org.graalvm.ruby"]


@pytest.fixture
def catalog_path(make_archive, catalog_entry, write_catalog):
    ruby = make_archive("org.graalvm.ruby", name="TruffleRuby")
    python = make_archive("org.graalvm.python")
    return write_catalog(
        [
            catalog_entry(ruby, "org.graalvm.ruby", name="TruffleRuby"),
            catalog_entry(python, "org.graalvm.python", requires={"graalvm_version": "0.33", "os_arch": "aarch64"}),
        ]
    )


def test_available(gu, catalog_path):
    code, out, _ = gu("--catalog", str(catalog_path), "available")

    assert code == 0
    assert "org.graalvm.ruby" in out
    assert "org.graalvm.python" in out


def test_available_from_environment(gu, catalog_path, monkeypatch):
    monkeypatch.setenv("GRAALVM_CATALOG", str(catalog_path))

    code, out, _ = gu("available", "ruby")

    assert code == 0
    assert "org.graalvm.ruby" in out
    assert "org.graalvm.python" not in out


def test_available_requires_catalog(gu, make_archive):
    code, _, _ = gu("--files", str(make_archive("org.graalvm.ruby")), "available")

    assert code == 1


def test_install_from_catalog(gu, catalog_path, graal_home):
    code, out, _ = gu("--catalog", str(catalog_path), "install", "ruby")

    assert code == 0
    assert "TruffleRuby" in out
    assert _installed(graal_home) == ["org.graalvm.ruby"]


def test_install_from_catalog_without_ids(gu, catalog_path):
    code, _, _ = gu("--catalog", str(catalog_path), "install")

    assert code == 1


def test_install_from_catalog_unknown(gu, catalog_path):
    code, _, err = gu("--catalog", str(catalog_path), "install", "fortran")

    assert code == 3
    assert "not found" in err


def test_install_from_catalog_unsupported(gu, catalog_path, graal_home):
    code, _, err = gu("--catalog", str(catalog_path), "install", "python")

    assert code == 3
    assert "os_arch" in err
    assert _installed(graal_home) == []


def test_catalog_for_newer_release(gu, make_archive, catalog_entry, write_catalog):
    archive = make_archive("org.graalvm.ruby")
    path = write_catalog([catalog_entry(archive, "org.graalvm.ruby")], required_version="1.0")

    code, _, err = gu("--catalog", str(path), "available")

    assert code == 3
    assert "requires version 1.0" in err


def test_corrupted_catalog(gu, tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text('{"components": []}')

    code, _, _ = gu("--catalog", str(path), "available")

    assert code == 3


def test_info_from_catalog(gu, catalog_path):
    code, out, _ = gu("--catalog", str(catalog_path), "info", "ruby")

    assert code == 0
    assert "org.graalvm.ruby" in out
    assert "TruffleRuby" in out


def test_info_from_file(gu, make_archive):
    code, out, _ = gu("--files", str(make_archive("org.graalvm.ruby")), "info")

    assert code == 0
    assert "org.graalvm.ruby" in out
    assert "Files" in out


def test_unknown_property_is_reported(gu, catalog_path):
    code, _, err = gu("-D", "no.such.option=1", "--catalog", str(catalog_path), "available")

    assert code == 0
    assert "no.such.option" in err


def test_invalid_property(gu):
    code, _, _ = gu("-D", "novalue", "list")

    assert code == 1


def test_rebuild_images_missing(gu):
    code, _, _ = gu("rebuild-images")

    assert code == 2


def test_cli_runner_list(graal_home, make_archive):
    runner = CliRunner()
    archive = make_archive("org.graalvm.ruby")

    result = runner.invoke(app, ["--home", str(graal_home), "--files", str(archive), "install"])
    assert result.exit_code == 0

    result = runner.invoke(app, ["--home", str(graal_home), "list"])
    assert result.exit_code == 0
    assert "org.graalvm.ruby" in result.output
