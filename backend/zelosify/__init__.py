"""Zelosify vendor-management backend."""
