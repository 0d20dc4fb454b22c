"""Service layer — business logic returning ServiceResult.

Services may import from domain, infrastructure, and executors.
They must never import from commands or output.
"""
