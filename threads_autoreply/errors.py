"""Exception hierarchy shared by the pipeline, repositories and HTTP layer."""

from typing import Optional


class AutoReplyError(Exception):
    """Base class for all service errors."""


class NotFoundError(AutoReplyError):
    """Requested record does not exist (or matched no row on update)."""


class DuplicateEntryError(AutoReplyError):
    """A uniqueness constraint rejected the write."""


class ForbiddenError(AutoReplyError):
    """Record belongs to a different account."""


class InvalidStateError(AutoReplyError):
    """Operation is not allowed from the record's current status."""


class MalformedPayloadError(AutoReplyError):
    """Inbound webhook body could not be decoded."""


class CredentialError(AutoReplyError):
    """No usable access token could be resolved for an account."""


class AnalysisError(AutoReplyError):
    """The AI collaborator failed or returned an unusable answer."""


class TemplateRenderError(AutoReplyError):
    """A reply template could not be rendered."""


class ThreadsAPIError(AutoReplyError):
    """Non-success response from the Threads Graph API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
