"""SapJuice ordering API: loyalty points, order lifecycle and live tracking."""

__version__ = "0.1.0"
