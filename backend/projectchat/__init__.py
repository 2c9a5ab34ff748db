"""Real-time project chat for the home-services marketplace."""

__version__ = "0.1.0"
