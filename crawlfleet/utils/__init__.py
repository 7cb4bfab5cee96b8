"""
Utility modules for the crawler fleet.
"""

from .config import Config, ConfigManager, load_config, load_seeds

__all__ = ['Config', 'ConfigManager', 'load_config', 'load_seeds']
