class KycEngineError(Exception):
    """Base class for engine errors"""


class ExtractionError(KycEngineError):
    """The feature extractor could not process its input. Retryable."""

    def __init__(self, message: str, source: str = None):
        super().__init__(message)
        self.source = source


class InconsistentStateError(KycEngineError):
    """An attempted transition violates the application state machine"""

    def __init__(self, message: str, application_id: str = None, missing_steps=None):
        super().__init__(message)
        self.application_id = application_id
        self.missing_steps = list(missing_steps or [])


class StaleApplicationError(InconsistentStateError):
    """A concurrent writer persisted the application first"""


class ApplicationNotFoundError(KycEngineError):
    """No application with the given id"""


class ConfigurationError(KycEngineError):
    """Required threshold or weight configuration is missing or invalid"""
