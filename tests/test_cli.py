"""Tests for the vaultsync command line."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner

from vaultsync.cli import cli

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("VAULTSYNC_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestFilename:
    def test_generated_name(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["filename"])
        assert result.exit_code == 0
        assert result.output.startswith("Pasted-image-")
        assert result.output.strip().endswith(".png")

    def test_hint_and_extension(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["filename", "--hint", "My Photo.jpeg", "--ext", "webp"])
        assert result.exit_code == 0
        assert result.output.strip().endswith("-my-photo.webp")


class TestAttach:
    def test_attach_file(self, runner: CliRunner, vault: Path, tmp_path: Path) -> None:
        source = tmp_path / "diagram.png"
        source.write_bytes(b"\x89PNG")

        result = runner.invoke(
            cli, ["--vault", str(vault), "attach", "note1", str(source), "--name", "diagram.png"]
        )

        assert result.exit_code == 0, result.output
        stored = vault / "work" / "website" / "launch-plan" / "_assets" / "diagram.png"
        assert stored.read_bytes() == b"\x89PNG"
        assert "Saved diagram.png" in result.output

    def test_extension_from_source_file(
        self, runner: CliRunner, vault: Path, tmp_path: Path
    ) -> None:
        source = tmp_path / "report.pdf"
        source.write_bytes(b"%PDF-1.7")

        result = runner.invoke(cli, ["--vault", str(vault), "attach", "note1", str(source)])

        assert result.exit_code == 0, result.output
        assets = vault / "work" / "website" / "launch-plan" / "_assets"
        stored = list(assets.iterdir())
        assert len(stored) == 1
        assert stored[0].suffix == ".pdf"

    def test_unknown_note(self, runner: CliRunner, vault: Path, tmp_path: Path) -> None:
        source = tmp_path / "diagram.png"
        source.write_bytes(b"x")
        result = runner.invoke(cli, ["--vault", str(vault), "attach", "ghost", str(source)])
        assert result.exit_code == 1

    def test_traversal_rejected(self, runner: CliRunner, vault: Path, tmp_path: Path) -> None:
        source = tmp_path / "diagram.png"
        source.write_bytes(b"x")
        result = runner.invoke(
            cli, ["--vault", str(vault), "attach", "note1", str(source), "--name", "../x.png"]
        )
        assert result.exit_code == 1
        assert not (vault / "work" / "website" / "launch-plan" / "x.png").exists()

    def test_missing_vault(self, runner: CliRunner, tmp_path: Path) -> None:
        source = tmp_path / "diagram.png"
        source.write_bytes(b"x")
        result = runner.invoke(cli, ["attach", "note1", str(source)])
        assert result.exit_code == 1


class TestResolve:
    def test_embeds_become_links(self, runner: CliRunner, vault: Path, tmp_path: Path) -> None:
        note = tmp_path / "note.md"
        note.write_text("Intro\n![[pic.png]]\n", encoding="utf-8")

        result = runner.invoke(cli, ["--vault", str(vault), "resolve", "note1", str(note)])

        assert result.exit_code == 0, result.output
        assert "![[" not in result.output
        assert "![](file://" in result.output
        assert "launch-plan/_assets/pic.png)" in result.output

    def test_symlinked_vault_resolved(
        self, runner: CliRunner, vault: Path, tmp_path: Path
    ) -> None:
        link = tmp_path / "vault-link"
        link.symlink_to(vault, target_is_directory=True)
        note = tmp_path / "note.md"
        note.write_text("![[pic.png]]", encoding="utf-8")

        result = runner.invoke(cli, ["--vault", str(link), "resolve", "note1", str(note)])

        assert result.exit_code == 0, result.output
        assert "vault-link" not in result.output
        assert vault.resolve().as_uri() in result.output
