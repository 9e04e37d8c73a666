"""susiefm package: SuSiE fine-mapping on individual-level data and summary statistics."""
from .config import FitConfig
from .ibss import FitStatus
from .model_susie import SuSiE, fit_from_data
from .model_susie_ss import SuSiE_SS, fit_from_bhat, fit_from_z, fit_suff_stat
from .parallel import fit_many
from .results import CredibleSet, FitResult
from .scaled_matrix import ScaledMatrixView
from .univariate import calc_z, univariate_regression

__all__ = [
    "CredibleSet",
    "FitConfig",
    "FitResult",
    "FitStatus",
    "ScaledMatrixView",
    "SuSiE",
    "SuSiE_SS",
    "calc_z",
    "fit_from_bhat",
    "fit_from_data",
    "fit_from_z",
    "fit_many",
    "fit_suff_stat",
    "univariate_regression",
]
__version__ = "1.0"
