"""Errors raised by the timer connection handler."""


class ConstructionError(TypeError):
    """The connection handle does not provide the group channel capabilities."""


class CommandError(Exception):
    """A protocol command was rejected. Reported through the acknowledgment."""


class ValidationError(CommandError):
    pass


class StateConflictError(CommandError):
    pass


class NotFoundError(CommandError):
    pass
