"""
Signed HTTP access to the remote object store.
"""

from tarlift.client.http import SigningClient, StoreResponse
from tarlift.client.session import Session
from tarlift.client.signing import AgentSigner, PrivateKeySigner, Signer
from tarlift.client.store import ConflictPolicy, ObjectInfo, StoreClient

__all__ = [
    "AgentSigner",
    "ConflictPolicy",
    "ObjectInfo",
    "PrivateKeySigner",
    "Session",
    "Signer",
    "SigningClient",
    "StoreClient",
    "StoreResponse",
]
