"""Repositories encapsulating SQL used by several services."""
