"""StudioPass: studio discovery, QR check-in and subscription sync core."""

__version__ = "0.1.0"
