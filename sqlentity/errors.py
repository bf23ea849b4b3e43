from packify import UsageError


class UnknownConnection(LookupError):
    """Raised when a connection name is not registered."""
    ...


class NoDefaultConnection(UsageError):
    """Raised when no connection is registered and none was requested
        by name.
    """
    ...


class UnknownRelationMethod(AttributeError):
    """Raised when a relationship name does not resolve to a method on
        the entity that returns a Relation.
    """
    ...


class InvalidRelatedType(TypeError):
    """Raised when the target of a relationship cannot be constructed."""
    ...


def vert(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a ValueError with the given message."""
    if not condition:
        raise ValueError(error_message)

def tert(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a TypeError with the given message."""
    if not condition:
        raise TypeError(error_message)

def tressa(condition: bool, error_message: str = '') -> None:
    """If condition is false, raises a packify.UsageError with the given
        message.
    """
    if not condition:
        raise UsageError(error_message)
