"""Exception taxonomy for the publishing pipeline."""

from pathlib import Path


class PhotoPublisherError(Exception):
    """Base class for every error raised by the pipeline."""


class ExifReadError(PhotoPublisherError):
    """Embedded camera metadata could not be parsed. Never fatal."""


class MetadataGenerationError(PhotoPublisherError):
    """The vision model returned a malformed or incomplete listing."""

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class SessionAcquisitionError(PhotoPublisherError):
    """No controllable browser surface could be obtained."""


class AuthenticationRequiredError(PhotoPublisherError):
    """The controlled browser is not logged into the target site."""


class UnexpectedPageError(PhotoPublisherError):
    """The page did not present an expected control."""

    def __init__(self, message: str, *, selector: str | None = None) -> None:
        super().__init__(message)
        self.selector = selector


class SubmissionTimeoutError(PhotoPublisherError):
    """No navigation followed the submit click and the form is still displayed."""

    def __init__(self, message: str, *, current_url: str) -> None:
        super().__init__(message)
        self.current_url = current_url


class FileRelocationError(PhotoPublisherError):
    """A published photo could not be moved into the completion folder."""

    def __init__(self, message: str, *, source: Path) -> None:
        super().__init__(message)
        self.source = source
