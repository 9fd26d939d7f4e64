"""HTTP and WebSocket transport over the lifecycle engine."""
