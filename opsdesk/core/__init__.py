# OpsDesk - Core Module
"""
Core module containing:
- config: environment-driven settings
- errors: error taxonomy
- logging: request-id aware logging
"""

from .config import Settings, get_settings, reload_settings
from .errors import *
from .logging import get_logger, setup_logging
