#!/usr/bin/env python3
"""
Photo Publisher: CLI app that lists photos on a print-on-demand marketplace.

For every JPEG/PNG in a folder: read its EXIF attributes, ask a vision-language
model for a title, description and tags, fill and submit the marketplace upload
form in a browser, then move the photo into a DONE folder beside it.

Requirements:
 - Playwright with Chromium installed (`playwright install chromium`), or a Chrome
   started with --remote-debugging-port=9222 for --browser-mode attach.
 - The browser profile must already be logged into the marketplace.
 - An OpenAI API key, or an Ollama / LM Studio server with a vision-language model.

"""
# ruff: noqa: PLR0913

import functools
import os
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Literal

from cyclopts import App, Parameter, validators
from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel

from photo_publisher.browser import BrowserMode, BrowserSettings, log_event_sink, open_session
from photo_publisher.copywriter import CopyGenerator, ProviderName, create_agent
from photo_publisher.errors import SessionAcquisitionError
from photo_publisher.models import AmbiguousSuccess, ListingCopy, PhotoTask, TaskState
from photo_publisher.orchestrator import UploadOrchestrator, UploadSettings


load_dotenv()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
PHOTO_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png"})


def _env_flag(name: str, default: bool = False) -> bool:  # noqa: FBT001, FBT002
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Configuration defaults
DEFAULT_PHOTOS_DIR = Path(os.getenv("REAL_PHOTOS_DIR", "pictures/toupload"))
DEFAULT_DEBUG_MODE = _env_flag("DEBUG_MODE")
DEFAULT_PROVIDER = os.getenv("PROVIDER", "openai")
DEFAULT_MODEL_NAME = os.getenv("MODEL_NAME", "gpt-4o")
DEFAULT_API_BASE_URL = os.getenv("API_BASE_URL")
DEFAULT_API_KEY = os.getenv("OPENAI_API_KEY")
DEFAULT_TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
DEFAULT_MAX_TOKENS = int(os.getenv("MAX_TOKENS", "1000"))
DEFAULT_JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "85"))
DEFAULT_DIMENSIONS = int(os.getenv("JPEG_DIMENSIONS", "2048"))
DEFAULT_BROWSER_MODE = os.getenv("BROWSER_MODE", "launch")
DEFAULT_CDP_URL = os.getenv("BROWSER_CDP_URL", "http://localhost:9222")
DEFAULT_USER_DATA_DIR = Path(os.getenv("BROWSER_USER_DATA_DIR", "user_data"))
DEFAULT_HEADLESS = _env_flag("HEADLESS")
DEFAULT_UPLOAD_DWELL_SECONDS = float(os.getenv("UPLOAD_DWELL_SECONDS", "60"))
DEFAULT_SETTLE_SECONDS = float(os.getenv("SETTLE_SECONDS", "5"))
DEFAULT_SUBMIT_TIMEOUT_MS = int(os.getenv("SUBMIT_TIMEOUT_MS", "60000"))


# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="photo-publisher",
    version=__version__,
)


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    logger.remove()

    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-photo_publisher.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


def list_photos(directory: Path) -> list[str]:
    """
    Return the photo file names in a folder, in directory listing order.

    Only regular files with a .jpg, .jpeg or .png extension (any case) are kept.
    An unreadable folder is logged and treated as empty.

    Examples:
        >>> list_photos(Path("/photos"))  # doctest: +SKIP
        ['a.jpg', 'b.png']

    """
    try:
        names = os.listdir(directory)
    except OSError as exc:
        logger.error("photo_directory_unreadable", directory=str(directory), error=str(exc))
        return []

    logger.debug("directory_listed", directory=str(directory), entries=len(names))
    return [
        name
        for name in names
        if Path(name).suffix.lower() in PHOTO_EXTENSIONS and (directory / name).is_file()
    ]


def ask_confirmation(
    task: PhotoTask,
    copy: ListingCopy,
    ask: Callable[[str], str] = input,
) -> bool:
    """Print the generated copy and return True only when the operator answers 'y'."""
    print(f"\nMetadata for {task.name}:")  # noqa: T201
    print(f"Title: {copy.title}")  # noqa: T201
    print(f"Description: {copy.description}")  # noqa: T201
    print(f"Tags: {copy.keywords}")  # noqa: T201
    answer = ask("Do you want to upload this photo? (y/n): ")
    return answer.strip().lower() == "y"


class BatchSummary(BaseModel):
    """Per-run counters reported when the batch ends."""

    total: int = 0
    attempted: int = 0
    succeeded: int = 0
    ambiguous: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.aborted and self.failed == 0


def run_batch(
    photos_dir: Path,
    *,
    copy_generator: CopyGenerator,
    orchestrator: UploadOrchestrator,
    confirm: bool = False,
    ask: Callable[[str], str] = input,
) -> BatchSummary:
    """
    Generate copy for and upload every photo in a folder, one at a time.

    A failing photo is logged and the batch moves on; only a missing browser
    (SessionAcquisitionError) stops the remaining photos. Nothing is retried.

    Args:
        photos_dir: Folder holding the photos to publish
        copy_generator: Produces the listing copy for each photo
        orchestrator: Drives the upload form for each photo
        confirm: Print the copy and ask the operator before each upload
        ask: Prompt function used when confirm is set

    Returns:
        Counters for the run

    """
    photos = list_photos(photos_dir)
    summary = BatchSummary(total=len(photos))
    if not photos:
        logger.info("no_photos_found", directory=str(photos_dir))
        return summary

    logger.info("photos_discovered", count=len(photos), directory=str(photos_dir))

    for idx, name in enumerate(photos, start=1):
        task = PhotoTask.from_path(photos_dir / name)
        index = f"{idx}/{summary.total}"
        summary.attempted += 1

        with logger.contextualize(file=task.name):
            logger.info("processing_photo", index=index)
            try:
                copy = copy_generator.generate(task.path)
                if confirm and not ask_confirmation(task, copy, ask):
                    logger.info("upload_skipped_by_operator", index=index)
                    summary.skipped += 1
                    continue
                outcome = orchestrator.upload(task, copy)
            except SessionAcquisitionError as exc:
                logger.exception("session_acquisition_failed_aborting_batch", error=str(exc))
                summary.failed += 1
                summary.aborted = True
                break
            except Exception as exc:  # noqa: BLE001
                task.state = TaskState.FAILED
                task.error = str(exc)
                logger.exception(
                    "processing_exception",
                    index=index,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                summary.failed += 1
                continue

            if isinstance(outcome, AmbiguousSuccess):
                summary.ambiguous += 1
                logger.warning("processing_ambiguous_success", index=index, url=outcome.current_url)
            else:
                summary.succeeded += 1
                logger.info("processing_success", index=index)

    logger.info("processing_summary", **summary.model_dump())
    return summary


@app.default
def publish(
    photos_dir: Annotated[
        Path,
        Parameter(
            name=("--photos-dir", "-d"),
            help="Folder holding the photos to publish (env REAL_PHOTOS_DIR)",
        ),
    ] = DEFAULT_PHOTOS_DIR,
    *,
    debug: Annotated[
        bool,
        Parameter(
            name=("--debug",),
            help="Confirm each upload interactively and capture browser diagnostics (env DEBUG_MODE)",
        ),
    ] = DEFAULT_DEBUG_MODE,
    provider_name: Annotated[
        ProviderName,
        Parameter(
            name=("--provider",),
            help="Backend provider: 'openai', 'ollama' or 'lmstudio'",
        ),
    ] = DEFAULT_PROVIDER,  # type: ignore[assignment]
    model_name: Annotated[
        str,
        Parameter(name=("--model", "-m"), help="Vision-language model name"),
    ] = DEFAULT_MODEL_NAME,
    api_base_url: Annotated[
        str | None,
        Parameter(name=("--url", "-u"), help="Provider API base URL"),
    ] = DEFAULT_API_BASE_URL,
    api_key: Annotated[
        str | None,
        Parameter(name=("--api-key", "-k"), help="Provider API key (env OPENAI_API_KEY)"),
    ] = DEFAULT_API_KEY,
    temperature: Annotated[
        float,
        Parameter(
            name=("--temperature",),
            validator=validators.Number(gte=0, lte=2),
            help="Sampling temperature",
        ),
    ] = DEFAULT_TEMPERATURE,
    max_tokens: Annotated[
        int,
        Parameter(name=("--max-tokens",), help="Maximum tokens to generate"),
    ] = DEFAULT_MAX_TOKENS,
    jpeg_dimensions: Annotated[
        int,
        Parameter(
            name=("--jpeg-dimensions",),
            help="Max dimension in pixels for the JPEG sent to the model",
        ),
    ] = DEFAULT_DIMENSIONS,
    jpeg_quality: Annotated[
        int,
        Parameter(
            name=("--jpeg-quality",),
            validator=validators.Number(gte=1, lte=100),
            help="JPEG quality (1-100) for the image sent to the model",
        ),
    ] = DEFAULT_JPEG_QUALITY,
    browser_mode: Annotated[
        BrowserMode,
        Parameter(
            name=("--browser-mode",),
            help="'launch' a browser with a persistent profile or 'attach' to a running Chrome",
        ),
    ] = DEFAULT_BROWSER_MODE,  # type: ignore[assignment]
    cdp_url: Annotated[
        str,
        Parameter(name=("--cdp-url",), help="DevTools endpoint used by --browser-mode attach"),
    ] = DEFAULT_CDP_URL,
    user_data_dir: Annotated[
        Path,
        Parameter(name=("--user-data-dir",), help="Browser profile used by --browser-mode launch"),
    ] = DEFAULT_USER_DATA_DIR,
    headless: Annotated[
        bool,
        Parameter(name=("--headless",), help="Run the launched browser without a window"),
    ] = DEFAULT_HEADLESS,
    upload_dwell: Annotated[
        float,
        Parameter(
            name=("--upload-dwell",),
            validator=validators.Number(gte=0),
            help="Seconds to let the image upload finish while the form is filled",
        ),
    ] = DEFAULT_UPLOAD_DWELL_SECONDS,
    settle: Annotated[
        float,
        Parameter(
            name=("--settle",),
            validator=validators.Number(gte=0),
            help="Seconds to wait before clicking submit",
        ),
    ] = DEFAULT_SETTLE_SECONDS,
    submit_timeout_ms: Annotated[
        int,
        Parameter(
            name=("--submit-timeout-ms",),
            validator=validators.Number(gt=0),
            help="How long to wait for a navigation after submit",
        ),
    ] = DEFAULT_SUBMIT_TIMEOUT_MS,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Publish every photo in a folder to the marketplace.

    Behavior:
    - Lists *.jpg, *.jpeg and *.png in the folder (not recursive).
    - For each photo: EXIF -> model copy -> upload form -> move to <folder>/DONE.
    - A failing photo stays in place and the batch continues; a missing browser
      stops the batch.
    - With --debug, the generated copy is shown and each upload must be confirmed.

    Exit status: 1 if any photo failed or the batch was aborted.

    Examples:
        photo-publisher -d ./pictures/toupload
        photo-publisher -d ./pictures/toupload --browser-mode attach --debug
        photo-publisher --provider ollama -m qwen2.5vl:7b

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    run_log = logger.bind(run=datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S"))
    run_log.info(
        "starting_photo_publisher",
        photos_dir=str(photos_dir),
        debug=debug,
        provider=provider_name,
        model=model_name,
        api_base_url=api_base_url,
        api_key_present=bool(api_key),
        browser_mode=browser_mode,
        cdp_url=cdp_url if browser_mode == "attach" else None,
        user_data_dir=str(user_data_dir) if browser_mode == "launch" else None,
        upload_dwell=upload_dwell,
        submit_timeout_ms=submit_timeout_ms,
    )

    agent = create_agent(
        provider_name,
        model_name,
        api_base_url=api_base_url,
        api_key=api_key,
    )
    copy_generator = CopyGenerator(
        agent,
        temperature=temperature,
        max_tokens=max_tokens,
        jpeg_quality=jpeg_quality,
        max_size=jpeg_dimensions,
        log=run_log,
    )

    browser_settings = BrowserSettings(
        mode=browser_mode,
        cdp_url=cdp_url,
        user_data_dir=user_data_dir,
        headless=headless,
    )
    orchestrator = UploadOrchestrator(
        functools.partial(open_session, browser_settings, log=run_log),
        settings=UploadSettings(
            upload_dwell_seconds=upload_dwell,
            settle_seconds=settle,
            submit_timeout_ms=submit_timeout_ms,
        ),
        event_sink=log_event_sink(run_log) if debug else None,
        log=run_log,
    )

    summary = run_batch(
        photos_dir,
        copy_generator=copy_generator,
        orchestrator=orchestrator,
        confirm=debug,
    )
    run_log.info("all_photos_processed", attempted=summary.attempted)

    if not summary.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    app()
