class InvalidParameters(ValueError):
    """Raised synchronously when render parameters or view requests are rejected."""


class ComputationFailure(RuntimeError):
    """A batch failed while sampling; the job that owned it is marked Failed."""


class ExportFailure(RuntimeError):
    """Encoding a finished buffer failed. The render job itself is unaffected."""
