"""
SCP wire format for scpush.

Builds the remote command line and formats the control records a
`scp -t` receiver understands.
"""

import os
import shlex
import stat
from dataclasses import dataclass

END_DIRECTORY = b"E\n"
END_OF_DATA = b"\0"


@dataclass(frozen=True)
class TransferOptions:
    """Per-transfer flags; fixed for the duration of a send."""

    preserve_times: bool = False
    quiet: bool = False


def build_send_command(destination: str, options: TransferOptions) -> str:
    """
    Build the remote command that starts the receiving scp.

    Args:
        destination: Remote target directory, quoted for the remote shell.
        options: Transfer flags selecting -p and -q.

    Returns:
        Command string such as ``scp -rtpq '/srv/my files'``.
    """
    flags = "-rt"
    if options.preserve_times:
        flags += "p"
    if options.quiet:
        flags += "q"
    return f"scp {flags} {shlex.quote(destination)}"


def permission_bits(st: os.stat_result) -> int:
    return stat.S_IMODE(st.st_mode) & 0o777


def timestamp_record(mtime: float, atime: float) -> bytes:
    return f"T{int(mtime)} 0 {int(atime)} 0\n".encode("ascii")


def file_record(mode: int, size: int, name: str) -> bytes:
    return f"C{mode:04o} {size} {name}\n".encode("utf-8", "surrogateescape")


def directory_record(mode: int, name: str) -> bytes:
    return f"D{mode:04o} 0 {name}\n".encode("utf-8", "surrogateescape")
