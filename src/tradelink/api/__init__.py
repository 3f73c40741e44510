"""HTTP and WebSocket API for the marketplace."""
