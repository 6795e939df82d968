"""Exit rule evaluation."""
