"""
SSH connection setup for scpush.

Dials the server with paramiko, retrying with progressively more
conservative settings for servers that drop or throttle new connections.
"""

import logging
import socket
import time
from typing import Any, Dict, List, Optional

import click
import paramiko

from scpush.exceptions import SessionError

logger = logging.getLogger(__name__)

RETRY_DELAY_SECONDS = 3


def _connect_strategies(
    password: Optional[str], key_filename: Optional[str]
) -> List[Dict[str, Any]]:
    """Connection settings to try in order, most permissive first."""
    allow_agent = not password and not key_filename
    look_for_keys = bool(not password or key_filename)
    return [
        {"timeout": 120, "compress": True, "look_for_keys": look_for_keys, "allow_agent": allow_agent},
        {"timeout": 150, "compress": False, "look_for_keys": look_for_keys, "allow_agent": allow_agent},
        {"timeout": 180, "compress": False, "look_for_keys": False, "allow_agent": allow_agent},
        {"timeout": 240, "compress": False, "look_for_keys": False, "allow_agent": allow_agent},
    ]


def connect_ssh(
    hostname: str,
    port: int = 22,
    username: Optional[str] = None,
    password: Optional[str] = None,
    key_filename: Optional[str] = None,
    quiet: bool = False,
) -> paramiko.SSHClient:
    """
    Open an SSH connection, retrying with fallback strategies.

    Unknown host keys are accepted automatically.

    Args:
        hostname: Server to connect to.
        port: SSH port (default: 22).
        username: Login name.
        password: Password, or passphrase when key_filename is encrypted.
        key_filename: Optional private key file.
        quiet: Suppress progress messages.

    Returns:
        Connected paramiko.SSHClient.

    Raises:
        SessionError: If every connection attempt fails.
    """
    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    strategies = _connect_strategies(password, key_filename)
    last_error: Optional[Exception] = None

    for attempt, settings in enumerate(strategies):
        if attempt and not quiet:
            click.echo(f"⏳ Retry {attempt}/{len(strategies) - 1} (timeout {settings['timeout']}s)...")
        logger.debug("Connecting to %s:%s with %s", hostname, port, settings)

        kwargs: Dict[str, Any] = {}
        if key_filename:
            kwargs["key_filename"] = key_filename
        try:
            ssh.connect(
                hostname,
                port=port,
                username=username,
                password=password,
                timeout=settings["timeout"],
                banner_timeout=settings["timeout"],
                auth_timeout=settings["timeout"],
                compress=settings["compress"],
                look_for_keys=settings["look_for_keys"],
                allow_agent=settings["allow_agent"],
                **kwargs,
            )
        except paramiko.AuthenticationException as e:
            ssh.close()
            raise SessionError(f"Authentication to {hostname} failed: {e}") from e
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            last_error = e
            if not quiet:
                click.echo(
                    click.style(f"⚠️  Connection attempt {attempt + 1} failed: {e}", fg="yellow"),
                    err=True,
                )
            if attempt < len(strategies) - 1:
                time.sleep(RETRY_DELAY_SECONDS)
            continue

        if not quiet:
            click.echo(f"✅ SSH connection to {hostname} established")
        return ssh

    ssh.close()
    raise SessionError(
        f"All {len(strategies)} connection attempts to {hostname}:{port} failed: {last_error}"
    ) from last_error
