"""firerelay — Firestore change relay for real-time clients.

Listens to document changes in Firestore and fans them out to connected
WebSocket clients, scoped to rooms derived from the project → task →
comment hierarchy.
"""

__version__ = "0.1.0"
