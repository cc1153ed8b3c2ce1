"""Infrastructure layer - database, HTTP integrations, filesystem adapters."""
