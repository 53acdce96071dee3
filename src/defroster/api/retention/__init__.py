"""TTL sweeps for both store tiers."""
