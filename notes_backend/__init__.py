"""HTTP API for the personal notes manager."""
