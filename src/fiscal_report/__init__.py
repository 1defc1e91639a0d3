"""Fiscal advice report pipeline and versioning engine."""
