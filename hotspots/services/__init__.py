"""Clustering, feature engineering and reconciliation services."""
