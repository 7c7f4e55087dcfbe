"""Remote state — S3 bucket and lock table bootstrap."""

from terrastack.core.remote.state import (
    BackendConfig,
    RemoteStateDescriptor,
    RemoteStateManager,
    descriptor_from_config,
)

__all__ = [
    "BackendConfig",
    "RemoteStateDescriptor",
    "RemoteStateManager",
    "descriptor_from_config",
]
