"""Custom middleware components."""

from marketguard.core.middleware.logging import LoggingMiddleware
from marketguard.core.middleware.request_id import RequestIDMiddleware


__all__ = ["LoggingMiddleware", "RequestIDMiddleware"]
