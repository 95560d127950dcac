"""Connection lifecycle: retries, verification, cleanup, state and registry."""
