"""Run history persistence."""
