"""Real-time infrastructure — in-process broadcast channels + WebSocket.

Learn: Messages flow through two hops:
1. POST /push → ChannelRegistry.lookup(token) → BroadcastChannel.send()
2. BroadcastChannel → Subscription → ConnectionSession → WebSocket client

Producers and consumers only share the token; neither knows the other.
"""
