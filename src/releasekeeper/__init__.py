"""Release resolution and installation lifecycle for separately distributed game builds."""

__version__ = "0.1.0"
