"""Search engine API clients."""
