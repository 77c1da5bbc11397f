"""
SCP push client for scpush.

Owns one SSH channel per send call, starts the remote `scp -rt` receiver
and feeds it the record stream produced by TreeEncoder.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Tuple

import click
import paramiko

from scpush.acks import DEFAULT_ACK_WINDOW, AckMonitor
from scpush.connection import connect_ssh
from scpush.encoder import TreeEncoder
from scpush.exceptions import RemoteExitError, ScpError, SessionError
from scpush.protocol import TransferOptions, build_send_command

logger = logging.getLogger(__name__)

# How long to wait for the ack reader to report why a write failed
FAILURE_GRACE_SECONDS = 5.0


class ScpClient:
    """
    Push files and directory trees to a remote host over SCP.

    Args:
        ssh_client: Connected paramiko client; its transport must outlive
            every send call.
        options: Transfer flags.
        ack_window: Maximum number of records in flight before waiting
            for the receiver's acknowledgments.
    """

    def __init__(
        self,
        ssh_client: paramiko.SSHClient,
        options: Optional[TransferOptions] = None,
        ack_window: int = DEFAULT_ACK_WINDOW,
    ) -> None:
        self.ssh_client = ssh_client
        self.options = options or TransferOptions()
        self.ack_window = ack_window

    @classmethod
    def connect(
        cls,
        hostname: str,
        username: str,
        password: Optional[str] = None,
        port: int = 22,
        key_filename: Optional[str] = None,
        preserve_times: bool = True,
        quiet: bool = False,
    ) -> "ScpClient":
        """
        Dial a server and return a client preserving timestamps by default.

        Unknown host keys are accepted; use this only with trusted servers.
        """
        ssh = connect_ssh(
            hostname,
            port=port,
            username=username,
            password=password,
            key_filename=key_filename,
            quiet=quiet,
        )
        return cls(ssh, TransferOptions(preserve_times=preserve_times, quiet=quiet))

    @classmethod
    def from_config(cls, host_config: Dict[str, Any]) -> "ScpClient":
        """Build a connected client from a configuration binding."""
        from scpush.config import transfer_options

        options = transfer_options(host_config)

        ssh = connect_ssh(
            host_config["hostname"],
            port=host_config.get("port", 22),
            username=host_config["username"],
            password=host_config.get("password"),
            key_filename=host_config.get("key_filename"),
            quiet=options.quiet,
        )
        return cls(
            ssh,
            options,
            ack_window=host_config.get("ack_window", DEFAULT_ACK_WINDOW),
        )

    def close(self) -> None:
        self.ssh_client.close()

    def __enter__(self) -> "ScpClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def send(self, destination: str, *paths: str) -> None:
        """
        Send local files and directories into a remote directory.

        Paths are sent in the given order over a single channel. The first
        failure aborts the remaining paths.

        Args:
            destination: Remote directory the receiver writes into.
            *paths: Local files or directories.

        Raises:
            SessionError: If the channel, its streams or the command fail.
            LocalFileError: If a local path cannot be read.
            RemoteError: If the receiver rejects a record.
            RemoteExitError: If the remote scp exits with a non-zero status.
        """
        command = build_send_command(destination, self.options)

        try:
            transport = self.ssh_client.get_transport()
            if transport is None or not transport.is_active():
                raise SessionError("Failed to create SSH session: not connected")
            channel = transport.open_session()
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"Failed to create SSH session: {e}") from e

        try:
            self._run(channel, command, paths)
        finally:
            channel.close()

    def _run(
        self, channel: paramiko.Channel, command: str, paths: Tuple[str, ...]
    ) -> None:
        try:
            stdin = channel.makefile_stdin("wb")
            stdout = channel.makefile("rb")
            stderr = channel.makefile_stderr("rb")
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"Unable to open session streams: {e}") from e

        logger.debug("Starting remote command: %s", command)
        if not self.options.quiet:
            click.echo(command)
        try:
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            raise SessionError(f"Failed to start '{command}': {e}") from e

        acks = AckMonitor(stdout, window=self.ack_window)
        encoder = TreeEncoder(stdin, self.options, acks=acks)

        with ThreadPoolExecutor(max_workers=3) as executor:
            exit_status = executor.submit(channel.recv_exit_status)
            reader = executor.submit(acks.run)
            # Keeps remote chatter from filling the channel window
            errors = executor.submit(stderr.read)
            try:
                for path in paths:
                    self._encode(encoder, acks, path)
                acks.drain()
                stdin.close()
                channel.shutdown_write()
            except BaseException:
                # Unblocks every worker before the executor joins them
                channel.close()
                raise
            reader.result()
            acks.check()
            status = exit_status.result()
            message = errors.result().decode("utf-8", "replace")

        if status != 0:
            raise RemoteExitError(status, message)
        logger.debug("Remote scp finished for %d path(s)", len(paths))

    def _encode(self, encoder: TreeEncoder, acks: AckMonitor, path: str) -> None:
        try:
            encoder.walk_and_send(path)
        except ScpError:
            raise
        except (paramiko.SSHException, OSError) as e:
            # A dead channel usually means the receiver already said why
            acks.wait_finished(timeout=FAILURE_GRACE_SECONDS)
            acks.check()
            raise SessionError(f"Failed to write to remote scp while sending {path}: {e}") from e
