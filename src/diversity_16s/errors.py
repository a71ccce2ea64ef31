# ===================================== IMPORTS ====================================== #

# Standard Library Imports
from typing import Iterable, List

# ==================================== EXCEPTIONS ==================================== #

class DiversityError(Exception):
    """Base class for all errors raised by the diversity pipeline."""
    pass


class DatasetError(DiversityError):
    """Raised when a community dataset cannot be constructed."""
    pass


class AlignmentError(DatasetError):
    """Raised when abundance, taxonomy and metadata identifiers disagree."""
    pass


class InvalidAbundanceError(DatasetError):
    """Raised for negative, non-finite or non-integer counts."""
    pass


class EmptySampleError(DiversityError):
    """Raised when a sample has zero total abundance and diversity is undefined.

    Attributes:
        samples: Identifiers of the offending samples.
    """

    def __init__(self, message: str, samples: Iterable[str] = ()):
        super().__init__(message)
        self.samples: List[str] = list(samples)


class DegenerateSampleError(EmptySampleError):
    """Raised when a dissimilarity cannot be computed for a zero-total sample."""
    pass


class StatisticalTestError(DiversityError):
    """Base class for errors local to a single hypothesis test."""
    pass


class GroupingError(StatisticalTestError):
    """Raised when a grouping factor does not fit the requested test."""
    pass


class InsufficientGroupsError(GroupingError):
    """Raised when fewer than two non-empty groups are present."""
    pass


class InsufficientSamplesError(StatisticalTestError):
    """Raised when a test does not have enough observations to run."""
    pass

# ===================================== WARNINGS ===================================== #

class ConvergenceWarning(UserWarning):
    """Issued when an iterative fit stops at its iteration budget."""
    pass
