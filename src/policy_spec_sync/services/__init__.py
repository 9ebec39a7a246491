"""Cluster API services."""
