"""Built-in batch jobs."""
