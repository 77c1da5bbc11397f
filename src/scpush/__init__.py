"""
scpush - Push files and directory trees to remote hosts over SCP

License: MIT License
"""

__version__ = "0.1.0"

# Public API exports
from scpush.acks import AckMonitor
from scpush.client import ScpClient
from scpush.config import get_host_config, load_config, load_config_with_sources
from scpush.connection import connect_ssh
from scpush.encoder import TreeEncoder
from scpush.exceptions import (
    LocalFileError,
    RemoteError,
    RemoteExitError,
    ScpError,
    SessionError,
)
from scpush.protocol import TransferOptions, build_send_command

__all__ = [
    "__version__",
    "AckMonitor",
    "ScpClient",
    "TreeEncoder",
    "TransferOptions",
    "build_send_command",
    "connect_ssh",
    "load_config",
    "load_config_with_sources",
    "get_host_config",
    "ScpError",
    "SessionError",
    "LocalFileError",
    "RemoteError",
    "RemoteExitError",
]
