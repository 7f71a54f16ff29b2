"""PortKeeper - listening port inventory and process control."""

__version__ = "1.0.0"
