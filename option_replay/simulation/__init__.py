"""Trade records and the per-trade forward simulation."""
