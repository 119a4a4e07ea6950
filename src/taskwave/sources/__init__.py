"""Task stores the planner reads from."""
