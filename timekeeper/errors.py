from __future__ import annotations


class TimekeeperError(Exception):
    """Base class for errors surfaced to the user as a readable message."""


class NotAuthenticated(TimekeeperError):
    pass


class NotFound(TimekeeperError):
    pass


class Expired(TimekeeperError):
    pass


class Conflict(TimekeeperError):
    pass


class ValidationError(TimekeeperError):
    pass


class AccessDenied(TimekeeperError):
    pass
