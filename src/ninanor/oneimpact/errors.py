"""Exceptions raised while building filters and computing zones of influence."""


class OneImpactError(Exception):
    """Base class for errors raised by ninanor.oneimpact."""


class InvalidParameter(OneImpactError, ValueError):
    """A parameter is out of range or conflicts with another parameter."""


class UnknownShape(OneImpactError, ValueError):
    """A decay shape name did not resolve to any known shape."""


class InvalidShape(OneImpactError, ValueError):
    """A known shape cannot be used in the requested context.

    Raised, for instance, when a GRASS GIS module does not implement the
    selected filter shape.
    """


class DimensionMismatch(OneImpactError, ValueError):
    """A user-supplied filter matrix is not square with an odd side."""


class BackendUnavailable(OneImpactError, RuntimeError):
    """The external GRASS GIS backend could not be reached."""


class BackendError(OneImpactError, RuntimeError):
    """A GRASS GIS module exited with an error."""

    def __init__(self, module, returncode, stderr):
        self.module = module
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f'GRASS module {module} exited with code {returncode}: '
            f'{stderr.strip()}')
