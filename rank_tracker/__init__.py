"""Shopping keyword rank tracker."""

__version__ = "1.0.0"
