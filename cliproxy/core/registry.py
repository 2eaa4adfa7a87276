"""Bridge registry for breaking circular imports.

This module holds the CLI bridge and settings so that routes can reach them
without importing the main module.
"""

# Set by main.py during initialization
bridge = None
settings = None


def set_bridge(bridge_instance, settings_instance=None):
    """Set the global bridge (and optionally settings) instance."""
    global bridge, settings
    bridge = bridge_instance
    if settings_instance is not None:
        settings = settings_instance


def get_bridge():
    """Get the global bridge instance."""
    if bridge is None:
        raise RuntimeError("Bridge not initialized. Did you call set_bridge?")
    return bridge


def get_settings():
    """Get the global settings instance."""
    if settings is None:
        raise RuntimeError("Settings not initialized. Did you call set_bridge?")
    return settings
