"""Batch engine: invocation, checkpointing and wave execution."""
