from .limiter import limiter, create_limiter, _rate_limit_exceeded_handler, get_user_id_from_request, compare_rate_limit

__all__ = ["limiter", "create_limiter", "_rate_limit_exceeded_handler", "get_user_id_from_request", "compare_rate_limit"]
