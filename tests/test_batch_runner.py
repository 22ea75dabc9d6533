"""Tests for photo discovery, the batch loop and logging setup."""

import os
from pathlib import Path

import pytest
from loguru import logger

import photo_publisher.main as m
from photo_publisher.errors import (
    AuthenticationRequiredError,
    MetadataGenerationError,
    SessionAcquisitionError,
)
from photo_publisher.models import (
    AmbiguousSuccess,
    Confirmed,
    ListingCopy,
    PhotoTask,
    SubmissionOutcome,
)


class FakeCopyGenerator:
    """Returns canned copy, or raises for configured file names."""

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[str] = []

    def generate(self, image_path: Path) -> ListingCopy:
        self.calls.append(image_path.name)
        if image_path.name in self.failures:
            raise self.failures[image_path.name]
        return ListingCopy(
            title=f"Title {image_path.stem}",
            description="Generated description.",
            tags=["sky", "orange"],
        )


class FakeOrchestrator:
    """Records uploads and answers with configured outcomes or errors."""

    def __init__(
        self,
        outcomes: dict[str, SubmissionOutcome | Exception] | None = None,
    ) -> None:
        self.outcomes = outcomes or {}
        self.uploaded: list[tuple[str, ListingCopy]] = []

    def upload(self, task: PhotoTask, copy: ListingCopy) -> SubmissionOutcome:
        self.uploaded.append((task.name, copy))
        result = self.outcomes.get(task.name, Confirmed())
        if isinstance(result, Exception):
            raise result
        return result


def _make_photos(folder: Path, *names: str) -> None:
    for name in names:
        (folder / name).write_bytes(b"data")


def test_list_photos_filters_by_extension_in_listing_order(tmp_path: Path) -> None:
    """Only jpg/jpeg/png files are kept, in the order the directory lists them."""
    _make_photos(tmp_path, "a.jpg", "b.png", "notes.txt")

    photos = m.list_photos(tmp_path)

    expected = [name for name in os.listdir(tmp_path) if name != "notes.txt"]
    assert photos == expected
    assert sorted(photos) == ["a.jpg", "b.png"]


def test_list_photos_is_case_insensitive_and_skips_folders(tmp_path: Path) -> None:
    """Upper-case extensions count; directories and the DONE folder never do."""
    _make_photos(tmp_path, "C.JPG", "d.Jpeg", "e.gif")
    (tmp_path / "DONE").mkdir()
    (tmp_path / "folder.png").mkdir()

    assert sorted(m.list_photos(tmp_path)) == ["C.JPG", "d.Jpeg"]


def test_list_photos_missing_directory_is_empty(tmp_path: Path) -> None:
    """An unreadable folder yields no photos instead of raising."""
    assert m.list_photos(tmp_path / "missing") == []


def test_run_batch_isolates_failures(tmp_path: Path) -> None:
    """A failing photo is counted and the remaining photos are still processed."""
    _make_photos(tmp_path, "a.jpg", "b.jpg", "c.png")
    copy_generator = FakeCopyGenerator()
    orchestrator = FakeOrchestrator(
        {
            "a.jpg": AuthenticationRequiredError("log in"),
            "c.png": AmbiguousSuccess(current_url="https://x.test/works/1"),
        },
    )

    summary = m.run_batch(
        tmp_path,
        copy_generator=copy_generator,  # type: ignore[arg-type]
        orchestrator=orchestrator,  # type: ignore[arg-type]
    )

    assert sorted(name for name, _ in orchestrator.uploaded) == ["a.jpg", "b.jpg", "c.png"]
    assert summary.total == 3
    assert summary.attempted == 3
    assert summary.succeeded == 1
    assert summary.ambiguous == 1
    assert summary.failed == 1
    assert summary.skipped == 0
    assert not summary.aborted
    assert not summary.ok


def test_copy_failure_never_reaches_browser(tmp_path: Path) -> None:
    """A bad model answer fails that photo before any upload is attempted."""
    _make_photos(tmp_path, "a.jpg", "b.jpg")
    copy_generator = FakeCopyGenerator(
        {"a.jpg": MetadataGenerationError("missing tags", raw_response="{}")},
    )
    orchestrator = FakeOrchestrator()

    summary = m.run_batch(
        tmp_path,
        copy_generator=copy_generator,  # type: ignore[arg-type]
        orchestrator=orchestrator,  # type: ignore[arg-type]
    )

    assert [name for name, _ in orchestrator.uploaded] == ["b.jpg"]
    assert summary.failed == 1
    assert summary.succeeded == 1


def test_session_acquisition_error_aborts_batch(tmp_path: Path) -> None:
    """Without a controllable browser the remaining photos are not attempted."""
    _make_photos(tmp_path, "a.jpg", "b.jpg", "c.jpg")
    first = m.list_photos(tmp_path)[0]
    copy_generator = FakeCopyGenerator()
    orchestrator = FakeOrchestrator({first: SessionAcquisitionError("no browser")})

    summary = m.run_batch(
        tmp_path,
        copy_generator=copy_generator,  # type: ignore[arg-type]
        orchestrator=orchestrator,  # type: ignore[arg-type]
    )

    assert copy_generator.calls == [first]
    assert summary.aborted
    assert summary.attempted == 1
    assert summary.failed == 1
    assert not summary.ok


def test_confirmation_allows_skipping(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """With confirmation on, only photos answered 'y' are uploaded."""
    _make_photos(tmp_path, "a.jpg", "b.jpg")
    answers = {"Title a": "n", "Title b": " Y "}
    orchestrator = FakeOrchestrator()
    prompts: list[str] = []

    def ask(question: str) -> str:
        prompts.append(question)
        printed = capsys.readouterr().out
        title = next(key for key in answers if key in printed)
        return answers[title]

    summary = m.run_batch(
        tmp_path,
        copy_generator=FakeCopyGenerator(),  # type: ignore[arg-type]
        orchestrator=orchestrator,  # type: ignore[arg-type]
        confirm=True,
        ask=ask,
    )

    assert [name for name, _ in orchestrator.uploaded] == ["b.jpg"]
    assert summary.skipped == 1
    assert summary.succeeded == 1
    assert len(prompts) == 2
    assert summary.ok


def test_ask_confirmation_prints_copy(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    """The operator sees the title, description and joined tags before answering."""
    task = PhotoTask.from_path(tmp_path / "a.jpg")
    copy = ListingCopy(title="Sunset", description="Warm.", tags=["sky", "orange"])

    assert m.ask_confirmation(task, copy, lambda _question: "y")
    out = capsys.readouterr().out
    assert "Title: Sunset" in out
    assert "Tags: sky, orange" in out
    assert not m.ask_confirmation(task, copy, lambda _question: "")


def test_empty_folder_returns_empty_summary(tmp_path: Path) -> None:
    """No photos means no work and a clean summary."""
    summary = m.run_batch(
        tmp_path,
        copy_generator=FakeCopyGenerator(),  # type: ignore[arg-type]
        orchestrator=FakeOrchestrator(),  # type: ignore[arg-type]
    )
    assert summary.total == 0
    assert summary.attempted == 0
    assert summary.ok


def test_setup_logging_creates_file_sink(tmp_path: Path) -> None:
    """The file sink lands in the log folder with the publisher prefix."""
    log_folder = tmp_path / "logs"
    try:
        m.setup_logging(file_log_level="DEBUG", console_log_level="OFF", log_folder=log_folder)
        logger.info("test_event", value=1)
        log_files = list(log_folder.glob("*-photo_publisher.log"))
        assert len(log_files) == 1
        assert "test_event" in log_files[0].read_text(encoding="utf-8")
    finally:
        logger.remove()
