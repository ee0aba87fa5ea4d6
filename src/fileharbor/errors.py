"""Exception hierarchy for fileharbor."""


class FileharborError(Exception):
    pass


class InvalidUrlError(FileharborError, ValueError):
    """A non-external (or malformed) URL was passed where an external one is required."""


class DirectoryError(FileharborError, OSError):
    """The local destination directory could not be prepared."""


class FetchError(FileharborError):
    """Base for every failure of a single outbound fetch."""

    def __init__(self, url: str, message: str = "") -> None:
        super().__init__(message or url)
        self.url = url


class HttpStatusError(FetchError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, f"HTTP error {status_code} when fetching {url}")
        self.status_code = status_code


class UnexpectedHtmlError(FetchError):
    def __init__(self, url: str) -> None:
        super().__init__(url, f"text/html returned instead of a file when fetching {url}")


class EmptyBodyError(FetchError):
    def __init__(self, url: str) -> None:
        super().__init__(url, f"empty body returned when fetching {url}")


class ResponseTooLargeError(FetchError):
    def __init__(self, url: str, limit: int) -> None:
        super().__init__(url, f"response from {url} exceeds {limit} bytes")
        self.limit = limit


class TransportError(FetchError):
    pass


class StorageError(FetchError):
    """The fetched body could not be written to local storage."""
