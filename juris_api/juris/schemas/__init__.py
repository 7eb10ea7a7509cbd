"""
Public Pydantic schemas used by repositories, services, and tests.

Schemas are grouped by domain module (publications, estimates) and also
include common reusable models such as the error envelope.
"""

from .common import MessageResponse  # noqa: F401
