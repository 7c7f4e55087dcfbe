"""
Domain models — Pydantic types for terrastack.

All models are re-exported here for convenient access:

    from terrastack.core.models import TerrastackConfig, Module, Receipt
"""

from terrastack.core.models.config import (
    DependenciesConfig,
    IncludeConfig,
    LockConfig,
    RemoteStateConfig,
    TerraformConfig,
    TerrastackConfig,
)
from terrastack.core.models.module import Module
from terrastack.core.models.receipt import Receipt, RunRequest

__all__ = [
    # config.py
    "DependenciesConfig",
    "IncludeConfig",
    "LockConfig",
    # module.py
    "Module",
    # receipt.py
    "Receipt",
    "RemoteStateConfig",
    "RunRequest",
    "TerraformConfig",
    "TerrastackConfig",
]
