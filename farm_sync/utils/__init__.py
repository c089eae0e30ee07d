"""Small helpers shared across the farm_sync modules."""
