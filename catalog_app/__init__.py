"""Catalog admin API with encrypted SKUs."""
