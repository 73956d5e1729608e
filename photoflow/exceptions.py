from typing import Union


class PhotoflowError(Exception):
    """Base exception for everything raised by photoflow."""


class PipelineError(PhotoflowError):
    """
    Raised by a processing stage. Carries the error kind written to the
    diagnostic file and the stage that was running when it happened.
    """

    kind = "UnexpectedError"

    def __init__(self, message: str, *, stage: Union[str, None] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    @classmethod
    def wrap(cls, exc: BaseException, *, stage: Union[str, None] = None) -> "PipelineError":
        if isinstance(exc, PipelineError):
            if exc.stage is None:
                exc.stage = stage
            return exc

        if isinstance(exc, OSError):
            error = TransientStorageError(str(exc) or type(exc).__name__, stage=stage)
        else:
            error = PipelineError(str(exc) or type(exc).__name__, stage=stage)

        error.__cause__ = exc
        return error

    @property
    def error_name(self) -> str:
        # report the class that actually failed, not our wrapper
        cause = self.__cause__
        if cause is not None and type(self) in (PipelineError, TransientStorageError):
            return type(cause).__name__
        return type(self).__name__


class ValidationError(PipelineError):
    kind = "ValidationError"


class UnsupportedExtensionError(ValidationError):
    pass


class ImageDecodeError(ValidationError):
    pass


class TransientStorageError(PipelineError):
    kind = "TransientStorageError"


class PersistenceError(PipelineError):
    kind = "PersistenceError"


class ProcessingTimeoutError(PipelineError):
    kind = "ProcessingTimeoutError"


class MetadataParseError(PhotoflowError):
    """Never leaves the metadata extractor."""


class RatingValueError(PhotoflowError, ValueError):
    pass


class NotFoundError(PhotoflowError):
    pass


class RatingNotFoundError(NotFoundError):
    pass


class PhotoNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass
