"""Domain layer — node types, variable resolution, conditions, graph models.

This layer depends only on stdlib, pydantic, and jinja2.
It must never import from services, infrastructure, executors, or commands.
"""
