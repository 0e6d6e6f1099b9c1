"""HTTP API for the registration engine."""
