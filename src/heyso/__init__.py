"""Heyso Diary client package."""

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:  # pragma: no cover - import only for static analysis
    from .services.container import create_services as create_services
else:
    def create_services(*args: Any, **kwargs: Any):
        from .services.container import create_services as _create_services

        return _create_services(*args, **kwargs)


__all__ = ["create_services"]
