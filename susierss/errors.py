"""Exception types raised while validating inputs and fitting SuSiE models."""
from __future__ import annotations
from typing import Iterable, Optional


class SuSiEError(Exception):
    """Base class for all errors raised by susierss."""


class InvalidInputError(SuSiEError, ValueError):
    """Shape, symmetry or value-range violation on z, R, X, y or a fit option."""


class InconsistentSummaryStatisticsError(SuSiEError, ValueError):
    """z-scores disagree with the LD matrix and the strict z check was requested."""

    def __init__(self, message: str, outliers: Iterable[int] = ()):
        super().__init__(message)
        self.outliers = tuple(int(i) for i in outliers)


class NumericalInstabilityError(SuSiEError, ArithmeticError):
    """A non-finite value appeared during an IBSS sweep."""

    def __init__(self, message: str, layer: Optional[int] = None, variables: Iterable[int] = ()):
        super().__init__(message)
        self.layer = layer
        self.variables = tuple(int(j) for j in variables)
