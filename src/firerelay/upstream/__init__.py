"""Upstream change-stream backends.

Learn: The relay listens through an Upstream. Production uses
FirestoreUpstream; tests plug in an in-memory one. Import the Firestore
backend from firerelay.upstream.firestore so firebase_admin is only loaded
when it is actually used.
"""

from firerelay.upstream.base import DEFAULT_STREAMS, StreamSpec, Upstream

__all__ = [
    "DEFAULT_STREAMS",
    "StreamSpec",
    "Upstream",
]
