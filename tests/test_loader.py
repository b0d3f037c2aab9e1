"""Tests for user extension directories."""

import csv

import pytest

from browser_extensions.extensions.extension import InjectionTime
from browser_extensions.extensions.loader import (
    ExtensionLoadError,
    ScriptedExtension,
    create_extension_structure,
    load_extension,
    load_extensions_from_directory,
    validate_script,
)
from browser_extensions.extensions.manager import ExtensionManager


def write_extension(directory, rows, scripts):
    directory.mkdir(parents=True)
    with open(directory / "extprops.csv", "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        for row in rows:
            writer.writerow(row)
    for name, source in scripts.items():
        (directory / name).write_text(source, encoding="utf-8")
    return directory


@pytest.fixture
def highlighter(tmp_path):
    return write_extension(
        tmp_path / "extensions" / "highlighter",
        [
            ["Key", "Value"],
            ["@name", "Highlighter"],
            ["@version", "2.0.0"],
            ["@description", "Highlights headings"],
            ["@enabled", "true"],
            ["@matches", "example.com,example.org"],
            [],
            ["Script", "Events"],
            ["main.js", "page_load,dom_ready"],
            ["early.js", "document_start"],
            ["missing.js", "page_load"],
            ["unknown.js", "link_click"],
        ],
        {
            "main.js": "document.querySelectorAll('h1').forEach(function(h) { h.style.background = 'yellow'; });",
            "early.js": "extension.storage.set('seen', true);",
            "unknown.js": "console.log('never');",
        },
    )


def test_load_extension(highlighter):
    extension = load_extension(str(highlighter))

    assert isinstance(extension, ScriptedExtension)
    assert extension.id == "highlighter"
    assert extension.name == "Highlighter"
    assert extension.version == "2.0.0"
    assert extension.description == "Highlights headings"
    assert extension.enabled
    assert [s.timing for s in extension.scripts] == [InjectionTime.ON_DOM_READY, InjectionTime.BEFORE_DOCUMENT]
    assert extension.is_active_for_domain("www.example.org")
    assert not extension.is_active_for_domain("other.com")


def test_load_extension_without_props(tmp_path):
    (tmp_path / "empty").mkdir()
    with pytest.raises(ExtensionLoadError):
        load_extension(str(tmp_path / "empty"))


def test_dangerous_scripts_are_rejected(tmp_path):
    ext_dir = write_extension(
        tmp_path / "bad",
        [["Key", "Value"], ["@name", "Bad"], ["Script", "Events"], ["main.js", "page_load"]],
        {"main.js": "eval(atob('ZXZpbA=='));"},
    )
    assert load_extension(str(ext_dir)).scripts == []
    assert len(load_extension(str(ext_dir), js_filter=False).scripts) == 1


@pytest.mark.parametrize("source, safe", [
    ("console.log('hello');", True),
    ("if (location == 'x') {}", True),
    ("while (true) {}", False),
    ("fetch('https://evil.example/')", False),
    ("document.cookie = 'a=b';", False),
    ("window.location.href = 'https://evil.example/';", False),
    ("localStorage.getItem('token')", False),
])
def test_validate_script(source, safe):
    assert validate_script(source) is safe


def test_scripts_outside_directory_are_skipped(tmp_path):
    (tmp_path / "secret.js").write_text("console.log('secret');", encoding="utf-8")
    ext_dir = write_extension(
        tmp_path / "escape",
        [["Key", "Value"], ["Script", "Events"], ["../secret.js", "page_load"]],
        {},
    )
    assert load_extension(str(ext_dir)).scripts == []


def test_load_extensions_from_directory(tmp_path, highlighter):
    (tmp_path / "extensions" / "not-an-extension").mkdir()
    (tmp_path / "extensions" / "stray-file.txt").write_text("x", encoding="utf-8")

    extensions = load_extensions_from_directory(str(tmp_path / "extensions"))
    assert [e.id for e in extensions] == ["highlighter"]


def test_missing_directory_loads_nothing(tmp_path):
    assert load_extensions_from_directory(str(tmp_path / "nope")) == []
    assert load_extensions_from_directory(None) == []


def test_create_extension_structure_loads(tmp_path):
    ext_dir = tmp_path / "created"
    assert create_extension_structure(str(ext_dir), "Created", "A new extension")

    extension = load_extension(str(ext_dir))
    assert extension.name == "Created"
    assert extension.description == "A new extension"
    assert len(extension.scripts) == 1
    assert extension.scripts[0].timing == InjectionTime.ON_DOM_READY


def test_manager_installs_persisted_user_extension(settings, highlighter):
    settings.set_installed_ids(["highlighter"])

    manager = ExtensionManager(settings)
    manager.initialize()

    assert manager.is_installed("highlighter")
    assert "highlighter" in [e.id for e in manager.available]


def test_user_extension_cannot_shadow_builtin(settings, tmp_path):
    write_extension(
        tmp_path / "extensions" / "dark-mode",
        [["Key", "Value"], ["Script", "Events"]],
        {},
    )
    manager = ExtensionManager(settings)
    manager.initialize()

    assert not isinstance(manager._available["dark-mode"], ScriptedExtension)
