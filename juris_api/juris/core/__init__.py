"""
Core application utilities for settings and FastAPI dependencies.

This package provides:
- Application-level settings (separate from DB settings)
- Logging configuration with correlation/tenant context
- Dependency helpers (tenant context per request, caller identity)
"""
