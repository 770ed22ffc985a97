"""Signal finalization and risk parameterization for AI-proposed trades."""

__version__ = "0.1.0"
