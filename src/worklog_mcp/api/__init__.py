"""REST collaborators: task sources, work-log ledger and follow-up records."""

from .catalog import SourceCatalog, TaskSource
from .client import (
    ApiClient,
    ApiError,
    ApiPayloadError,
    ApiResult,
    ApiUnavailableError,
    FakeApiClient,
)
from .followups import (
    FollowUpGateway,
    FollowUpNotFoundError,
    FollowUpSuccessor,
    ProgramFollowUpGateway,
    StoryFollowUpGateway,
    gateway_for,
)
from .ledger import WorkLedger, WorkLogDraft, WorkLogRecord, WorkLogSummary

__all__ = [
    "ApiClient",
    "ApiError",
    "ApiPayloadError",
    "ApiResult",
    "ApiUnavailableError",
    "FakeApiClient",
    "FollowUpGateway",
    "FollowUpNotFoundError",
    "FollowUpSuccessor",
    "ProgramFollowUpGateway",
    "SourceCatalog",
    "StoryFollowUpGateway",
    "TaskSource",
    "WorkLedger",
    "WorkLogDraft",
    "WorkLogRecord",
    "WorkLogSummary",
    "gateway_for",
]
