"""Local HTTP API of the relay agent."""
