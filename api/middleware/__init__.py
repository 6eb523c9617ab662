from .request_id import RequestIDMiddleware, bind_user_id, get_request_id, get_client_ip
from .logging import LoggingMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "bind_user_id",
    "get_request_id",
    "get_client_ip",
]
