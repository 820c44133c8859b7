"""Worker integrations."""
