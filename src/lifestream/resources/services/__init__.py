"""Default service catalogue."""
