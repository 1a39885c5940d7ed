"""Inference provisioner — idempotent reconciliation of a GPU inference host."""

__version__ = "0.1.0"
