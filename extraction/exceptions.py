class ExtractionError(Exception):
    """Base for failures the HTTP layer knows how to answer."""

    status_code = 500
    default_message = "Extraction failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class PageUnavailable(ExtractionError):
    """Navigation failed, login wall, or "not found" page on every address variant."""

    status_code = 404
    default_message = (
        "This video is private, removed, or requires login. "
        "Check that the link opens without signing in and try again."
    )


class NoCandidatesFound(ExtractionError):
    status_code = 404
    default_message = "Video not found or inaccessible"


class DownloadFailed(ExtractionError):
    status_code = 500
    default_message = "Failed to download stream"


class RemuxFailed(ExtractionError):
    # Recovered by the caller; never surfaced as a request failure.
    status_code = 500
    default_message = "Failed to merge video and audio"
