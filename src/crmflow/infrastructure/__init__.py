"""Infrastructure layer — database, graph engine, workspace.

This layer depends on stdlib, third-party libs (SQLAlchemy, NetworkX),
and the pure domain models. It must never import from services,
executors, commands, or output.
"""
