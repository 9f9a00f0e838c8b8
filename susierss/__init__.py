"""susierss package: SuSiE fine-mapping from summary statistics (SuSiE-RSS) and individual-level data."""
import logging

from .errors import (InconsistentSummaryStatisticsError, InvalidInputError, NumericalInstabilityError,
                     SuSiEError)
from .ld import check_z, cov2cor, estimate_s_rss, muffled_corr, regularize_ld
from .model_susie import SuSiE, fit_individual
from .model_susie_rss import SuSiE_RSS, fit_rss
from .options import IBSSOptions
from .results import CredibleSet, FitResult
from .summary import Summary, summarize, susie_get_cs, susie_get_pip
from .univariate import calc_z, univariate_regression

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "SuSiE", "SuSiE_RSS", "fit_rss", "fit_individual", "summarize", "Summary",
    "FitResult", "CredibleSet", "IBSSOptions",
    "cov2cor", "regularize_ld", "check_z", "estimate_s_rss", "muffled_corr",
    "susie_get_cs", "susie_get_pip", "calc_z", "univariate_regression",
    "SuSiEError", "InvalidInputError", "InconsistentSummaryStatisticsError", "NumericalInstabilityError",
]
__version__ = "1.1"
