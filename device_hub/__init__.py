"""Device Hub - registry and connection orchestration for Android devices."""

__version__ = "0.1.0"
