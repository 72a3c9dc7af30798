"""
Exception hierarchy for the Task Extractor
"""
from typing import Optional


class TaskExtractorError(Exception):
    """Base class for all Task Extractor errors"""


class ConfigurationError(TaskExtractorError):
    """Settings are missing or invalid for the requested operation"""


class SchedulingError(TaskExtractorError):
    """A timer could not be registered or cancelled"""


class ProbeFailure(TaskExtractorError):
    """A local LLM service could not be reached or answered with an error"""

    def __init__(self, service: str, url: str = "", reason: str = ""):
        self.service = service
        self.url = url
        self.reason = reason
        super().__init__(f"{service} not available at {url or '<unset>'}: {reason}")


class LLMProviderError(TaskExtractorError):
    """An LLM request failed (HTTP error, malformed payload, timeout)"""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        self.provider = provider
        self.status = status
        super().__init__(message)


class PipelineFailure(TaskExtractorError):
    """Extraction for a single note failed"""

    def __init__(self, file_id: str, cause: Optional[BaseException] = None):
        self.file_id = file_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Extraction failed for {file_id}{detail}")
