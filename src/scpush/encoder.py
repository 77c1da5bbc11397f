"""
Tree encoder for scpush.

Turns local files and directory trees into the flat record stream of the
SCP protocol. Directory boundaries exist on the wire only as D (enter) and
E (leave) records, so the encoder keeps a stack mirroring the directories
currently open on the receiver and emits the minimal pops and pushes needed
to move from one visited entry to the next.
"""

import logging
import os
import stat
import time
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

import click

from scpush.acks import AckMonitor
from scpush.exceptions import LocalFileError
from scpush.protocol import (
    END_DIRECTORY,
    END_OF_DATA,
    TransferOptions,
    directory_record,
    file_record,
    permission_bits,
    timestamp_record,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024


def _stat(path: str, follow_symlinks: bool = True) -> os.stat_result:
    try:
        return os.stat(path, follow_symlinks=follow_symlinks)
    except OSError as e:
        raise LocalFileError(path, e.strerror or str(e)) from e


def _list_dir(directory: str) -> List[str]:
    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        raise LocalFileError(directory, e.strerror or str(e)) from e
    return [os.path.join(directory, name) for name in names]


def walk_tree(root: str) -> Iterator[Tuple[str, os.stat_result]]:
    """
    Walk a directory tree depth-first, parents before children.

    Siblings are visited in name order. The root is stat'ed following
    symlinks, everything below it without.

    Args:
        root: Directory (or file) to walk; yielded first.

    Yields:
        (path, stat_result) for root and every entry below it.
    """
    st = _stat(root)
    yield root, st
    if not stat.S_ISDIR(st.st_mode):
        return

    pending: List[Iterator[str]] = [iter(_list_dir(root))]
    while pending:
        path = next(pending[-1], None)
        if path is None:
            pending.pop()
            continue
        st = _stat(path, follow_symlinks=False)
        yield path, st
        if stat.S_ISDIR(st.st_mode):
            pending.append(iter(_list_dir(path)))


def _root_name(path: str) -> str:
    name = os.path.basename(path)
    if name in ("", os.curdir, os.pardir):
        name = os.path.basename(os.path.abspath(path))
    if not name:
        raise LocalFileError(path, "cannot send the filesystem root")
    return name


class TreeEncoder:
    """
    Write SCP records for local paths into a binary stream.

    One encoder serves a whole send call; its directory stack is empty
    between top-level paths. When an AckMonitor is attached, every record
    waits for a free slot in its window, and file data or directory contents
    are only sent once the receiver has accepted their header.
    """

    def __init__(
        self,
        stream: BinaryIO,
        options: TransferOptions,
        acks: Optional[AckMonitor] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.stream = stream
        self.options = options
        self.acks = acks
        self.clock = clock
        self.stack: List[str] = []

    def walk_and_send(self, path: str) -> None:
        """
        Send one top-level path: a regular file or a whole directory tree.

        Args:
            path: Local path; normalised before use.

        Raises:
            LocalFileError: If any entry cannot be stat'ed, listed or read.
        """
        cleaned = os.path.normpath(path)
        st = _stat(cleaned)

        if stat.S_ISREG(st.st_mode):
            self.send_regular_file(cleaned, st)
            return
        if not stat.S_ISDIR(st.st_mode):
            raise LocalFileError(cleaned, "not a regular file or directory")

        root_name = _root_name(cleaned)
        start_depth = len(self.stack)

        for entry_path, entry_st in walk_tree(cleaned):
            is_dir = stat.S_ISDIR(entry_st.st_mode)
            if not is_dir and not stat.S_ISREG(entry_st.st_mode):
                logger.debug("Skipping %s: not a regular file or directory", entry_path)
                continue

            relative = os.path.relpath(entry_path, cleaned)
            segments = [root_name]
            if relative != os.curdir:
                segments.extend(relative.split(os.sep))

            containing = segments if is_dir else segments[:-1]
            self._sync_stack(cleaned, containing, entry_path, entry_st)

            if not is_dir:
                self.send_regular_file(entry_path, entry_st)

        while len(self.stack) > start_depth:
            self._leave_directory()

    def send_regular_file(self, path: str, st: os.stat_result) -> None:
        """
        Send one file record: optional T line, C line, data and terminator.

        The file is opened before anything is written, so a file that
        vanished after it was stat'ed fails without a partial record.
        """
        name = os.path.basename(path)
        if "\n" in name:
            raise LocalFileError(path, "file name contains a newline")

        try:
            source = open(path, "rb")
        except OSError as e:
            raise LocalFileError(path, e.strerror or str(e)) from e

        with source:
            self._settle()
            if self.options.preserve_times:
                self._write_record(timestamp_record(st.st_mtime, self.clock()))
            self._write_record(file_record(permission_bits(st), st.st_size, name))
            self._settle()

            self._reserve()
            remaining = st.st_size
            while remaining > 0:
                try:
                    chunk = source.read(min(CHUNK_SIZE, remaining))
                except OSError as e:
                    raise LocalFileError(path, e.strerror or str(e)) from e
                if not chunk:
                    raise LocalFileError(
                        path, f"file shrank during transfer ({remaining} bytes missing)"
                    )
                self.stream.write(chunk)
                remaining -= len(chunk)
            self.stream.write(END_OF_DATA)
            self.stream.flush()

        logger.debug("Sent %s (%d bytes)", path, st.st_size)
        if not self.options.quiet:
            click.echo(f"✅ Copied: {path}")

    def _sync_stack(
        self,
        root: str,
        target: List[str],
        entry_path: str,
        entry_st: os.stat_result,
    ) -> None:
        common = 0
        for open_name, wanted in zip(self.stack, target):
            if open_name != wanted:
                break
            common += 1

        while len(self.stack) > common:
            self._leave_directory()

        for depth in range(common, len(target)):
            directory = os.path.join(root, *target[1 : depth + 1])
            if directory == entry_path:
                dir_st = entry_st
            else:
                dir_st = _stat(directory, follow_symlinks=False)
            self._enter_directory(directory, target[depth], dir_st)

    def _enter_directory(self, path: str, name: str, st: os.stat_result) -> None:
        if "\n" in name:
            raise LocalFileError(path, "directory name contains a newline")
        if self.options.preserve_times:
            self._write_record(timestamp_record(st.st_mtime, self.clock()))
        self._write_record(directory_record(permission_bits(st), name))
        # Nothing may follow a D record the receiver refused
        self._settle()
        self.stack.append(name)

    def _leave_directory(self) -> None:
        self._write_record(END_DIRECTORY)
        self.stack.pop()

    def _reserve(self) -> None:
        if self.acks is not None:
            self.acks.expect()

    def _settle(self) -> None:
        """Wait for every pending reply; raises the receiver's error if any."""
        if self.acks is not None:
            self.acks.drain()

    def _write_record(self, record: bytes) -> None:
        self._reserve()
        logger.debug("Sending SCP record: %r", record)
        self.stream.write(record)
        self.stream.flush()
