"""SiliconFlow API key balance tracker."""

__version__ = "0.1.0"
