"""Exception hierarchy for cellgroups."""

from .constants import LEVEL_LABELS, UNAVAILABLE_MESSAGE


class CellGroupError(Exception):
    """Base class for all cellgroups errors."""


class DeclarationError(CellGroupError, ValueError):
    """Raised when a group or cluster declaration cannot be expanded."""

    def __init__(self, message, line=None, column=None):
        self.line = line
        self.column = column
        if line is not None and column is not None:
            message = f"{message} (line {line}, column {column})"
        elif line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)


class ScopeSyntaxError(CellGroupError, ValueError):
    """Raised when a scope-access expression cannot be compiled."""

    def __init__(self, message, fragment=None):
        self.fragment = fragment
        if fragment:
            message = f"{message}: {fragment!r}"
        super().__init__(message)


class CapabilityUnavailable(CellGroupError, RuntimeError):
    """Raised when a group is asked for an access level it does not provide."""

    def __init__(self, access_level, artifact):
        self.access_level = access_level
        self.artifact = artifact
        label = LEVEL_LABELS.get(access_level, str(access_level))
        super().__init__(
            UNAVAILABLE_MESSAGE.format(
                level=label, level_lower=label.lower(), artifact=artifact
            )
        )


class CapabilityMismatch(CellGroupError, TypeError):
    """Raised when a type does not carry the capabilities an operation needs."""


class OwnershipError(CellGroupError, RuntimeError):
    """Base class for owner-token violations."""


class OwnerExistsError(OwnershipError):
    """Raised when a second live owner is requested for the same marker."""


class OwnerReleasedError(OwnershipError):
    """Raised when a released owner is used."""


class BorrowError(OwnershipError):
    """Raised when a reference is used without the permission it needs."""


class ScopeError(CellGroupError, NameError):
    """Raised when a scope block refers to an outer name that does not exist."""


__all__ = [
    "CellGroupError",
    "DeclarationError",
    "ScopeSyntaxError",
    "CapabilityUnavailable",
    "CapabilityMismatch",
    "OwnershipError",
    "OwnerExistsError",
    "OwnerReleasedError",
    "BorrowError",
    "ScopeError",
]
