"""Domain models and API schemas shared across the service."""
