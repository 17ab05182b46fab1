"""
Configuration for the transfer engine.
"""

from .config_loader import TransferConfig, DEFAULT_CONFIG

__all__ = ["TransferConfig", "DEFAULT_CONFIG"]
