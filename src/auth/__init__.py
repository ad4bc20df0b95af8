from .auth import AuthConfig, BaseAuth, BearerTokenAuth

__all__ = [
    "AuthConfig",
    "BaseAuth",
    "BearerTokenAuth",
]
