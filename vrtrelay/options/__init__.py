"""
Options Module - Runtime Configuration

Validates command line flags into a RuntimeConfig.
"""

from .validator import (
    DEFAULT_BPF_FILTER,
    FlagSource,
    Mode,
    RuntimeConfig,
    parse_bool_flag,
    parse_client_addresses,
    validate_config_options,
)

__all__ = [
    'DEFAULT_BPF_FILTER',
    'FlagSource',
    'Mode',
    'RuntimeConfig',
    'parse_bool_flag',
    'parse_client_addresses',
    'validate_config_options',
]
