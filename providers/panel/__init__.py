# providers/panel/__init__.py
# QLSync - QingLong panel client
from .qinglong import (
    STATUS_DISABLED,
    STATUS_ENABLED,
    QingLongClient,
    RemoteVariable,
    UpsertResult,
    connection_complete,
)

__all__ = [
    "QingLongClient",
    "RemoteVariable",
    "UpsertResult",
    "connection_complete",
    "STATUS_ENABLED",
    "STATUS_DISABLED",
]
