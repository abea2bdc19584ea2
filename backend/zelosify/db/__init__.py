"""Relational storage for tenants, users, openings and candidate profiles."""
