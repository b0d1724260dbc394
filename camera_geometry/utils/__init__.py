"""
Utility Functions and Helpers
"""

from .config_manager import ConfigManager

__all__ = ['ConfigManager']
