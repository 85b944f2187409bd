"""Shared test models and query contracts."""
