from .profile import ProfileMiddleware

__all__ = ["ProfileMiddleware"]
