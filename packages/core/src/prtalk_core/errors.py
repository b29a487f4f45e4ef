"""Exceptions raised by the question pipeline.

ChatError subclasses carry a protocol code and are the only errors that reach
callers of ChatAssistant. Model errors stay inside the orchestrator and are
turned into fallback answers by the assistant.
"""

from __future__ import annotations


class ChatError(Exception):
    code = "MESSAGE_FAILED"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


class InvalidQuestion(ChatError):
    code = "INVALID_QUESTION"


class SessionNotFound(ChatError):
    code = "SESSION_NOT_FOUND"


class Unauthorized(ChatError):
    code = "UNAUTHORIZED"


class MessageFailed(ChatError):
    code = "MESSAGE_FAILED"


class InvalidResponse(ChatError):
    code = "INVALID_RESPONSE"


class ArtifactNotFound(ChatError):
    """The pull request or repository has not been loaded into the store."""

    code = "ARTIFACT_NOT_FOUND"


class ModelCallError(Exception):
    """A single model call failed. Raised by providers, retried by the orchestrator."""


class ModelRateLimited(ModelCallError):
    pass


class ModelTimeout(ModelCallError):
    pass


class ModelUnavailable(Exception):
    """Both the primary and the secondary model ran out of attempts."""

    def __init__(self, message: str, last_error: BaseException | None = None):
        super().__init__(message)
        self.last_error = last_error
