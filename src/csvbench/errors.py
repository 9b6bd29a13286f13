class CsvBenchError(Exception):
    """Base class for csvbench errors."""


class ConfigurationError(CsvBenchError):
    """Raised for unusable options, datasets or implementation selections.

    Configuration failures are fatal: the CLI aborts before any measurement.
    """


class ImplementationLoadError(CsvBenchError):
    """Raised when an implementation target cannot be imported."""


class ImplementationFailure(CsvBenchError):
    """Raised inside a matrix run when an implementation fails outside the retry envelope."""
