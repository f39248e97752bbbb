"""Progress engine error taxonomy.

Duplicate badge awards and replayed XP grants are not errors: the
services report them as ``False`` / not-granted results so at-least-once
callers never see a failure for a retry.
"""

from __future__ import annotations

from typing import Any


class ProgressError(Exception):
    """Base class for every error raised by the progress engine."""


class NotFoundError(ProgressError, LookupError):
    """A referenced catalog entry or row does not exist."""


class UnknownChallengeError(NotFoundError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Unknown challenge: {code}")
        self.code = code


class UnknownBadgeError(NotFoundError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Unknown badge: {code}")
        self.code = code


class UserChallengeNotFoundError(NotFoundError):
    def __init__(self, user_challenge_id: int) -> None:
        super().__init__(f"User challenge {user_challenge_id} not found")
        self.user_challenge_id = user_challenge_id


class AlreadyJoinedError(ProgressError):
    """The user already has an active run of this challenge."""

    def __init__(self, user_id: str, code: str) -> None:
        super().__init__(f"User {user_id} already joined challenge {code}")
        self.user_id = user_id
        self.code = code


class InvalidStateError(ProgressError):
    """Mutation attempted on a user challenge that is no longer active."""

    def __init__(self, user_challenge_id: int, status: str | None) -> None:
        super().__init__(f"User challenge {user_challenge_id} is '{status}', not active")
        self.user_challenge_id = user_challenge_id
        self.status = status


class PersistenceError(ProgressError):
    """The store failed. Safe to retry: every engine step is idempotent."""

    retryable = True

    def __init__(self, message: str, partial_result: Any = None) -> None:
        super().__init__(message)
        self.partial_result = partial_result
