"""
Service layer: orchestration over repositories.
"""
