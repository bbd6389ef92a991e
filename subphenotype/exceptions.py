"""
Error types raised by the comparison pipeline.

File access problems are reported with the built-in ``OSError`` (``IOError``).
"""


class SubphenotypePipelineError(Exception):
    """Base class for fatal pipeline errors."""


class SchemaError(SubphenotypePipelineError):
    """An expected column is absent or holds values of the wrong kind."""

    def __init__(self, message: str, columns=None, source=None):
        super().__init__(message)
        self.columns = list(columns or [])
        self.source = source


class ImputationError(SubphenotypePipelineError):
    """Missing values cannot be estimated, e.g. a feature column is entirely empty."""

    def __init__(self, message: str, columns=None):
        super().__init__(message)
        self.columns = list(columns or [])
