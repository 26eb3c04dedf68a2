from .resolver import resolve, resolve_field

__all__ = ["resolve", "resolve_field"]
