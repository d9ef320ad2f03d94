"""nudo: type inference for Python functions driven by @nudo directives."""

__version__ = "0.1.0"
