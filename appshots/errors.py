from typing import List, Optional


class AppShotsError(Exception):
    """Base class for errors surfaced by the pipeline."""


class GeneratorError(AppShotsError):
    """A single background generation call failed."""


class GenerationTimeout(GeneratorError):
    def __init__(self, seconds: float) -> None:
        super().__init__(f"Image generation timed out after {int(seconds)} seconds.")
        self.seconds = seconds


class GenerationCancelled(AppShotsError):
    def __init__(self) -> None:
        super().__init__("Generation was cancelled.")


class GenerationFailure(AppShotsError):
    """
    Raised (or attached to a result) when a batch finishes with missing images.

    `kind` is "total" when nothing was delivered and "partial" otherwise.
    """

    def __init__(
        self,
        kind: str,
        succeeded: int,
        total: int,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.kind = kind
        self.succeeded = succeeded
        self.total = total
        self.cause = cause
        reason = str(cause) if cause is not None else "unknown error"
        if kind == "partial":
            message = (
                f"Some images failed to generate ({succeeded}/{total} succeeded): {reason}"
            )
        else:
            message = f"Image generation failed (0/{total} succeeded): {reason}"
        super().__init__(message)

    @property
    def is_partial(self) -> bool:
        return self.kind == "partial"


class DecodeFailure(AppShotsError):
    """Background bytes could not be decoded; handled by the gradient fallback."""


class CompositionFailure(AppShotsError):
    def __init__(self, screen_index: int, reason: str) -> None:
        super().__init__(f"Failed to compose screen {screen_index}: {reason}")
        self.screen_index = screen_index
        self.reason = reason


class ExportError(AppShotsError):
    """
    Base class for export errors.

    `results` holds the files that were written before the failure.
    """

    def __init__(self, message: str, results: Optional[List] = None) -> None:
        super().__init__(message)
        self.results = list(results or [])


class NoImages(ExportError):
    def __init__(self) -> None:
        super().__init__("No images to export.")


class EncodingFailure(ExportError):
    def __init__(self, file_name: str, reason: str, results: Optional[List] = None) -> None:
        super().__init__(f"Failed to encode {file_name}: {reason}", results)
        self.file_name = file_name


class WriteFailure(ExportError):
    def __init__(self, path, reason: str, results: Optional[List] = None) -> None:
        super().__init__(f"Failed to write to {path}: {reason}", results)
        self.path = path
