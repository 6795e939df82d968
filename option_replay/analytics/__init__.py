"""Summary statistics and JSON/CSV report writing."""
