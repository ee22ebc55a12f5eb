"""cstr_engine stirred tank residual and Jacobian engine package."""

from __future__ import annotations

from .ad_utils import (
    compare_banded_jacobian_with_ad,
    compare_dense_jacobian_with_ad,
    compare_dense_jacobian_with_banded_ad,
    copy_from_ad,
    copy_to_ad,
    extract_banded_jacobian_from_ad,
    extract_dense_jacobian_from_ad,
    extract_dense_jacobian_from_banded_ad,
    prepare_ad_vector_seeds_for_band_matrix,
    prepare_ad_vector_seeds_for_dense_matrix,
    reset_ad,
)
from .autodiff import ADVector, Dual
from .binding import (
    BindingModel,
    LinearBinding,
    NoBinding,
    available_binding_models,
    create_binding_model,
)
from .config import JacobianMode, StirredTankConfig
from .errors import (
    ConfigurationError,
    ContractViolationError,
    CstrEngineError,
    NotConfiguredError,
    UnknownBindingModelError,
)
from .layout import StateLayout
from .matrix_ops import BandMatrix, CompressedSparseMatrix, DenseMatrix, SparseMatrix
from .parameters import ParameterId, ParameterRegistry
from .stirred_tank import StirredTankModel

__all__ = [
    "ADVector",
    "BandMatrix",
    "BindingModel",
    "CompressedSparseMatrix",
    "ConfigurationError",
    "ContractViolationError",
    "CstrEngineError",
    "DenseMatrix",
    "Dual",
    "JacobianMode",
    "LinearBinding",
    "NoBinding",
    "NotConfiguredError",
    "ParameterId",
    "ParameterRegistry",
    "SparseMatrix",
    "StateLayout",
    "StirredTankConfig",
    "StirredTankModel",
    "UnknownBindingModelError",
    "available_binding_models",
    "compare_banded_jacobian_with_ad",
    "compare_dense_jacobian_with_ad",
    "compare_dense_jacobian_with_banded_ad",
    "copy_from_ad",
    "copy_to_ad",
    "create_binding_model",
    "extract_banded_jacobian_from_ad",
    "extract_dense_jacobian_from_ad",
    "extract_dense_jacobian_from_banded_ad",
    "prepare_ad_vector_seeds_for_band_matrix",
    "prepare_ad_vector_seeds_for_dense_matrix",
    "reset_ad",
]

__version__ = "0.1.0"
