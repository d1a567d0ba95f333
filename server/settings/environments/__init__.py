"""Environment-specific settings."""
