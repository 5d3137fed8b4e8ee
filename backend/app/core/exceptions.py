"""
Unified base exception classes for all services.

Each service extends ServiceError with its own base (e.g. ReferralServiceError)
so that routers can translate any of them with a single `except ServiceError`.
"""
from fastapi import HTTPException


class ServiceError(Exception):
    """Base exception for all service-layer errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def raise_http(e: ServiceError):
    """Convert service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)
