"""Two-phase walking-distance join between resident points and transit stations."""

__version__ = "0.1.0"
