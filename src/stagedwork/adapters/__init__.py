"""Storage and transport adapters for the coordinator ports."""
