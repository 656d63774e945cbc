from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from src.config_utils import PipelineSettings
from src.errors import ConfigurationError, InputFolderError
from src.pipeline import RunOptions, run_pipeline
from src.schema import ProcessingProgress, ProviderRequest, ProviderResponse


class FakeProvider:
    """Scriptable provider that records every request it receives."""

    def __init__(self, failures_before_success: dict[str, int] | None = None):
        self.failures_before_success = failures_before_success or {}
        self.calls: list[str] = []

    def __call__(self, request: ProviderRequest) -> ProviderResponse:
        name = request.files[0].name
        self.calls.append(name)
        remaining = self.failures_before_success.get(name, 0)
        if remaining < 0 or self.calls.count(name) <= remaining:
            return ProviderResponse.failure(f"{name} unavailable")
        return ProviderResponse(
            success=True, data={"summary": f"Summary of {name}", "topics": ["a", "b"]}
        )


@pytest.fixture
def folder(tmp_path: Path) -> Path:
    path = tmp_path / "documents"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path) -> PipelineSettings:
    return PipelineSettings(output_dir=tmp_path / "outputs")


def _add_pdfs(folder: Path, *names: str) -> None:
    for name in names:
        (folder / name).write_bytes(b"%PDF-1.4")


def _options(folder: Path, **overrides) -> RunOptions:
    values = {"folder": folder, "model": "gpt-4.1", "concurrency": 2, "retries": 3}
    values.update(overrides)
    return RunOptions(**values)


def _run(options: RunOptions, settings: PipelineSettings, provider: FakeProvider):
    return run_pipeline(
        options,
        settings=settings,
        provider_call=provider,
        install_signals=False,
        sleep=lambda _delay: None,
    )


def _rows(path: Path) -> list[list[str]]:
    with path.open(newline="", encoding="utf-8") as handle:
        return list(csv.reader(handle))[1:]


def test_empty_folder_does_nothing(folder, settings):
    provider = FakeProvider()
    (folder / "notes.txt").write_text("not a pdf")

    summary = _run(_options(folder), settings, provider)

    assert summary.discovered == 0
    assert summary.output_path is None
    assert provider.calls == []
    assert not settings.output_dir.exists()


def test_all_succeed_removes_progress_file(folder, settings):
    _add_pdfs(folder, "a.pdf", "b.pdf", "c.PDF")
    provider = FakeProvider()

    summary = _run(_options(folder), settings, provider)

    assert summary.succeeded == 3
    assert summary.failed == 0
    assert summary.progress_cleared
    assert not (settings.output_dir / "progress-gpt-4.1.json").exists()
    rows = _rows(summary.output_path)
    assert sorted(row[0] for row in rows) == ["a.pdf", "b.pdf", "c.PDF"]
    assert all(row[2] == "a, b" for row in rows)


def test_single_file_succeeds_on_third_attempt(folder, settings):
    _add_pdfs(folder, "doc.pdf")
    provider = FakeProvider({"doc.pdf": 2})

    summary = _run(_options(folder, retries=3), settings, provider)

    assert summary.succeeded == 1
    assert provider.calls == ["doc.pdf"] * 3


def test_always_failing_file_is_retained_in_progress(folder, settings):
    _add_pdfs(folder, "broken.pdf")
    provider = FakeProvider({"broken.pdf": -1})

    summary = _run(_options(folder, retries=2), settings, provider)

    assert provider.calls == ["broken.pdf"] * 3
    assert summary.failed == 1
    assert summary.failed_files == ["broken.pdf"]
    assert not summary.progress_cleared
    progress_path = settings.output_dir / "progress-gpt-4.1.json"
    data = json.loads(progress_path.read_text(encoding="utf-8"))
    assert data["failed"] == ["broken.pdf"]
    assert data["completed"] == []
    assert data["totalFiles"] == 1
    assert _rows(summary.output_path) == []


def test_rerun_skips_completed_files(folder, settings, tmp_path):
    _add_pdfs(folder, "doc1.pdf", "doc2.pdf")
    progress_file = tmp_path / "custom-progress.json"
    progress_file.write_text(
        ProcessingProgress(completed=["doc1.pdf"], total_files=2).to_json(),
        encoding="utf-8",
    )
    provider = FakeProvider()

    summary = _run(
        _options(folder, progress_file=progress_file), settings, provider
    )

    assert provider.calls == ["doc2.pdf"]
    assert summary.skipped == 1
    rows = _rows(summary.output_path)
    assert [row[0] for row in rows] == ["doc2.pdf"]
    assert summary.progress_cleared
    assert not progress_file.exists()


def test_previous_failures_are_skipped_unless_retry_requested(folder, settings, tmp_path):
    _add_pdfs(folder, "ok.pdf", "flaky.pdf")
    progress_file = tmp_path / "progress.json"
    progress_file.write_text(
        ProcessingProgress(completed=["ok.pdf"], failed=["flaky.pdf"]).to_json(),
        encoding="utf-8",
    )

    provider = FakeProvider()
    summary = _run(_options(folder, progress_file=progress_file), settings, provider)
    assert provider.calls == []
    assert summary.failed_files == ["flaky.pdf"]
    assert progress_file.exists()

    summary = _run(
        _options(folder, progress_file=progress_file, retry_failed=True),
        settings,
        provider,
    )
    assert provider.calls == ["flaky.pdf"]
    assert summary.succeeded == 1
    assert not progress_file.exists()


def test_missing_folder_is_an_input_error(tmp_path, settings):
    with pytest.raises(InputFolderError):
        _run(_options(tmp_path / "nope"), settings, FakeProvider())


def test_missing_credential_fails_before_scheduling(folder, settings):
    _add_pdfs(folder, "a.pdf")

    with pytest.raises(ConfigurationError):
        run_pipeline(
            _options(folder),
            settings=settings,
            environ={},
            install_signals=False,
        )
    assert not settings.output_dir.exists()


@pytest.mark.parametrize(
    "overrides",
    [
        {"concurrency": 0},
        {"concurrency": 21},
        {"retries": 11},
        {"temperature": 2.5},
        {"provider": "anthropic"},
        {"reasoning_effort": "extreme"},
        {"model": ""},
    ],
)
def test_run_options_validation(folder, overrides):
    with pytest.raises(ValueError):
        _options(folder, **overrides)
