"""Schema migration runner for the RegularTravelManager database."""
from .config import Settings, configure_logger, load_settings
from .database import Database

__version__ = '1.0.0'

__all__ = ['Database', 'Settings', 'configure_logger', 'load_settings']
