"""Shell execution adapter."""
