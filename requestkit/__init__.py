"""Immutable HTTP request descriptors with dispatch-time body encoding."""
