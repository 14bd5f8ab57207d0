from .config_manager import ConfigManager, get_config_manager
from .errors import (
    CamNoiseError,
    InitializationFailedError,
    InvalidArgumentError,
    InvalidStateError,
    ProducerContextError,
    ResourceExhaustedError,
)
from .logging_config import configure_from_settings, configure_logging
from .logging_utils import LoggerLike, StructuredLogger, ensure_structured_logger, get_module_logger

__all__ = [
    'CamNoiseError',
    'ConfigManager',
    'InitializationFailedError',
    'InvalidArgumentError',
    'InvalidStateError',
    'LoggerLike',
    'ProducerContextError',
    'ResourceExhaustedError',
    'StructuredLogger',
    'configure_from_settings',
    'configure_logging',
    'ensure_structured_logger',
    'get_config_manager',
    'get_module_logger',
]
