"""
Structured logging setup for polyauthz
"""

import logging
import sys
from typing import Optional

import structlog

from .config import EngineConfig, get_engine_config
from .constants import SERVICE_NAME, SERVICE_VERSION


def configure_logging(config: Optional[EngineConfig] = None) -> None:
    """Install the structlog processor chain on top of stdlib logging"""
    config = config or get_engine_config()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)
    
    renderer = (
        structlog.processors.JSONRenderer()
        if config.log_json
        else structlog.dev.ConsoleRenderer()
    )
    
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    
    structlog.get_logger(__name__).info(
        "Logging configured",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        level=config.log_level,
    )
