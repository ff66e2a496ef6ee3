"""pushall — token-keyed push notification relay.

Producers POST a message to /push?token=...; every WebSocket client
connected to /ws with the same token receives it. Tokens are opaque
routing keys, not credentials.
"""

__version__ = "0.1.0"
