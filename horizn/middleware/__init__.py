"""
Middleware package.
"""
from horizn.middleware.error_handler import ErrorHandlerMiddleware
from horizn.middleware.request_id import RequestIdMiddleware

__all__ = [
    "ErrorHandlerMiddleware",
    "RequestIdMiddleware",
]
