"""HTTP adapter for machine load distribution."""
