from .constants import APP_NAME, SCHEMA_VERSION, VERSION

__all__ = ["APP_NAME", "SCHEMA_VERSION", "VERSION"]
