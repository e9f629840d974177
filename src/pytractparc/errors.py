"""Exception hierarchy for pytractparc.

Every failure is fatal for a run: nothing is retried and no partial output is
written. The CLI catches ``PyTractParcError`` and reports the message.
"""


class PyTractParcError(Exception):
    """Base class for all pytractparc errors."""


class IoError(PyTractParcError, OSError):
    """A file could not be opened, read or written."""


class FormatError(PyTractParcError, ValueError):
    """A byte stream does not follow the expected binary layout."""


class PreconditionViolation(PyTractParcError, ValueError):
    """Caller-supplied data is inconsistent with a documented contract."""


class ConfigError(PyTractParcError, ValueError):
    """A propagation scheme file is malformed."""
