from fastapi import HTTPException, status


class AuthenticationError(HTTPException):
    """Raised when no valid session identifies the caller"""
    def __init__(self, detail: str = "Not authenticated"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class AuthorizationError(HTTPException):
    """Raised when the caller is known but does not own the resource"""
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFoundError(HTTPException):
    """Raised when resource not found or not visible to the caller"""
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ConflictError(HTTPException):
    """Raised when a write would break an invariant"""
    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class ValidationError(HTTPException):
    """Raised when input is malformed or missing"""
    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class RateLimitError(HTTPException):
    """Raised when a limiter rejects the caller"""
    def __init__(self, detail: str = "Too many requests. Please try again later.", retry_after_ms: int = 0):
        retry_after = str(max(1, -(-retry_after_ms // 1000)))
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": retry_after},
        )


class UpstreamError(HTTPException):
    """Raised when the payment backend is unreachable or answers non-2xx"""
    def __init__(self, detail: str = "Payment backend error"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)
