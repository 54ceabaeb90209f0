from .client import AuthenticationError, DSAClient, DSAClientError
from .models import ParentType, RemoteContainer, RemoteItem, SyncContext

__all__ = [
    "AuthenticationError",
    "DSAClient",
    "DSAClientError",
    "ParentType",
    "RemoteContainer",
    "RemoteItem",
    "SyncContext",
]
