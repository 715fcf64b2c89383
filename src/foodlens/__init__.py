"""On-device food label analysis: model lifecycle and streaming inference."""

__version__ = "0.1.0"
