"""Atomic draft/production synchronisation for relational data sets."""
