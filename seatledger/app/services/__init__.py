"""Application wiring for the licensing services."""
