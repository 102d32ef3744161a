"""Exceptions raised by c3dwriter."""


class C3DError(Exception):
    """Base class for every error raised by the writer and reader."""


class InvalidPathError(C3DError, ValueError):
    """A parameter key is not of the form ``GROUP:NAME``."""


class LifecycleError(C3DError, RuntimeError):
    """An operation is not allowed in the writer's current state.

    Groups and parameters can only be created while the file is closed.
    """


class ChannelCountMismatchError(C3DError, ValueError):
    """Analog data length differs from the declared channel count."""


class ParameterTypeError(C3DError, TypeError):
    """A value has an unsupported shape, or one that does not match the
    parameter it is meant to replace."""


class IOFailure(C3DError, OSError):
    """The underlying file could not be opened, seeked or written."""
