"""Letter generation, verification and approval."""
