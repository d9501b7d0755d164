"""
Errors and warnings raised by the analysis pipeline.

Fetch and reshape problems are fatal and raised as exceptions. Fit-quality
problems are warnings: they are emitted with ``warnings.warn`` and also kept
on the result object they concern.
"""


class AnalysisError(Exception):
    """Base class for fatal pipeline errors."""


class DataFetchError(AnalysisError):
    """The Wordbank source was unreachable or returned a malformed payload."""


class EmptyResultError(AnalysisError):
    """A filtering stage produced zero rows."""

    def __init__(self, stage: str, detail: str = ''):
        self.stage = stage
        message = f"Stage '{stage}' produced no rows"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class AnalysisWarning(UserWarning):
    """Base class for fit and data quality warnings."""


class MissingInventoryWarning(AnalysisWarning):
    """Rows were dropped because their instrument has no word count."""


class NonConvergenceWarning(AnalysisWarning):
    """A model fit stopped at its iteration cap without converging."""


class DegenerateComparisonWarning(AnalysisWarning):
    """A likelihood-ratio comparison has a non-positive df difference."""
