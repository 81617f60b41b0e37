"""External system wrappers used by the orchestrators."""
