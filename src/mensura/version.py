"""Version information for Mensura."""

__version__ = "0.4.0"
__version_display__ = f"Mensura V{__version__}"
