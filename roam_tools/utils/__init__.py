"""Utilities for talking to Roam Desktop."""
