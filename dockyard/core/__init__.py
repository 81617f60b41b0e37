"""Core orchestration for dockyard."""
