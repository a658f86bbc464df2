"""
Errors raised by the Jira sync core.

Connection-level errors (AuthError, NotFoundError) abort a whole operation.
The rest describe a single request or a single item in a batch.
"""
from __future__ import annotations


class JiraSyncError(RuntimeError):
    """Base class for Jira sync failures."""


class AuthError(JiraSyncError):
    """The stored Jira credential is expired or revoked; the user must reconnect."""


class NotFoundError(JiraSyncError):
    """No connection (or mapping) exists for the requested user/record."""


class RemoteApiError(JiraSyncError):
    """Jira (or the Atlassian auth server) answered with a non-2xx status."""

    def __init__(self, status_code: int, raw_body: str) -> None:
        super().__init__(f"Jira API error ({status_code}): {raw_body}")
        self.status_code = status_code
        self.raw_body = raw_body


class DuplicateMappingError(JiraSyncError):
    """The task or the remote issue already has a mapping for this user."""


class NoTransitionError(JiraSyncError):
    """The issue's workflow offers no transition into the wanted status category."""

    def __init__(self, issue_key: str, target_category: str) -> None:
        super().__init__(
            f"No valid transition found for {issue_key} to status category: {target_category}"
        )
        self.issue_key = issue_key
        self.target_category = target_category


class UnsupportedActionError(JiraSyncError, ValueError):
    """The proxy was asked for an action outside the fixed action set."""

    def __init__(self, action: str) -> None:
        super().__init__(f"Unknown action: {action}")
        self.action = action


class InvalidParameterError(JiraSyncError, ValueError):
    """A proxy action was called with a missing or malformed parameter."""


class TaskNotFoundError(JiraSyncError):
    """The local task behind a mapping no longer exists."""

    def __init__(self, task_id: object) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id
