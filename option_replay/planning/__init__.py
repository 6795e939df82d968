"""Per-leg strategy planning: expirations, strikes and opening premiums."""
