"""Exception types shared by the aggregation pipeline"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base class for pipeline errors"""


class ConfigurationError(PipelineError):
    """Required configuration or credentials are missing"""


class UpstreamError(PipelineError):
    """Aggregator API answered with a non-successful status or error envelope"""

    def __init__(self, status: Optional[int], body: str, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"OKX API error! status: {status}, details: {body}")


class ParseError(PipelineError):
    """Aggregator API answered with a body that is not valid JSON"""

    def __init__(self, body: str, reason: str = ""):
        self.body = body
        super().__init__(f"JSON parse error: {reason}" if reason else "JSON parse error")


class MetadataLookupError(PipelineError, LookupError):
    """Relational store failed while looking up token or protocol metadata"""


class ValidationFailure(PipelineError):
    """A fetched record does not have the required shape and must be dropped"""

    def __init__(self, reason: str, record: Any = None):
        self.reason = reason
        self.record = record
        super().__init__(reason)


class RefreshInProgress(PipelineError):
    """Another refresh of the same resource currently holds the lock"""

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"Refresh already running for {resource}")
