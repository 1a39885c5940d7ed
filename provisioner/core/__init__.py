"""Core reconciliation: models, engine, config, persistence."""
