"""Unit tests for the file side-channel."""

import os

import pytest

from chatbridge.core.file_markers import FileMarkerExtractor


@pytest.fixture
def project(tmp_path):
    files_dir = tmp_path / "app" / ".chatbridge" / "files"
    files_dir.mkdir(parents=True)
    return tmp_path / "app"


def test_find_paths_requires_files_dir():
    extractor = FileMarkerExtractor()
    text = "Wrote /work/app/.chatbridge/files/report.pdf and edited /work/app/src/main.py."

    assert extractor.find_paths(text) == ["/work/app/.chatbridge/files/report.pdf"]


def test_find_paths_strips_punctuation_and_dedupes():
    extractor = FileMarkerExtractor()
    text = "See /p/.chatbridge/files/a.png! Again: (/p/.chatbridge/files/a.png) and /p/.chatbridge/files/b.txt?"

    assert extractor.find_paths(text) == ["/p/.chatbridge/files/a.png", "/p/.chatbridge/files/b.txt"]


def test_find_paths_ignores_relative_and_urls():
    extractor = FileMarkerExtractor()

    assert extractor.find_paths("open .chatbridge/files/a.png or https://x.io/.chatbridge/files/a.png") == []


def test_custom_dirname():
    extractor = FileMarkerExtractor("/out/")

    assert extractor.find_paths("made /w/out/plot.svg") == ["/w/out/plot.svg"]


def test_extract_removes_paths_and_tidies_text(project):
    chart = project / ".chatbridge" / "files" / "chart.png"
    chart.write_bytes(b"png")
    text = f"Here is the chart:\n`{chart}`   \n\n\n\nAnything else?"

    display, paths = FileMarkerExtractor().extract(text, str(project))

    assert paths == [str(chart)]
    assert display == "Here is the chart:\n\nAnything else?"


def test_missing_files_are_left_in_text(project):
    ghost = project / ".chatbridge" / "files" / "ghost.png"
    text = f"Saved {ghost}"

    assert FileMarkerExtractor().extract(text, str(project)) == (text, [])


def test_symlink_escaping_project_is_rejected(project, tmp_path):
    outside = tmp_path / "secret.txt"
    outside.write_text("secret")
    link = project / ".chatbridge" / "files" / "secret.txt"
    os.symlink(outside, link)

    assert FileMarkerExtractor().validate([str(link)], str(project)) == []


def test_validate_without_project_path(project):
    real = project / ".chatbridge" / "files" / "a.txt"
    real.write_text("a")

    extractor = FileMarkerExtractor()

    assert extractor.validate([str(real)], "") == []
    assert extractor.validate([str(real)], str(project)) == [str(real)]
