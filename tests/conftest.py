"""
Shared pytest fixtures for scpush tests.
"""

import json
import os
import tempfile
import threading
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest


class ScpSink:
    """
    Minimal in-memory `scp -t` receiver.

    Parses the records written by the client, answers each one and keeps
    the reconstructed tree as {relative path: (mode, content)}. Like the
    real receiver it keeps reading after a `\\1` reply but remembers the
    error for its exit status; a `\\2` reply stops it.
    """

    def __init__(
        self,
        reply: Any,
        warn_on: Optional[str] = None,
        fail_on: Optional[str] = None,
    ) -> None:
        self._reply = reply
        self.warn_on = warn_on
        self.fail_on = fail_on
        self.records: List[bytes] = []
        self.files: Dict[str, Any] = {}
        self.directories: Dict[str, int] = {}
        self.failed = False
        self.errors = 0
        self._buf = b""
        self._dirs: List[str] = []
        self._pending: Optional[Dict[str, Any]] = None

    def feed(self, data: bytes) -> None:
        self._buf += data
        while self._buf and not self.failed:
            if self._pending is not None:
                need = self._pending["remaining"]
                chunk, self._buf = self._buf[:need], self._buf[need:]
                self._pending["data"] += chunk
                self._pending["remaining"] -= len(chunk)
                if self._pending["remaining"] == 0:
                    payload = self._pending["data"]
                    assert payload.endswith(b"\0")
                    self.files[self._pending["path"]] = (
                        self._pending["mode"],
                        payload[:-1],
                    )
                    self._pending = None
                    self._reply(b"\0")
                continue

            end = self._buf.find(b"\n")
            if end < 0:
                return
            line, self._buf = self._buf[:end], self._buf[end + 1 :]
            self.records.append(line)
            self._handle(line)

    def _handle(self, line: bytes) -> None:
        kind = line[:1]
        if kind == b"E":
            self._dirs.pop()
            self._reply(b"\0")
            return
        if kind == b"T":
            self._reply(b"\0")
            return

        mode, size, name = line[1:].decode().split(" ", 2)
        path = "/".join(self._dirs + [name])
        if self.fail_on and self.fail_on == name:
            self.failed = True
            self._reply(f"\x02{path}: No space left on device\n".encode())
            return
        if self.warn_on and self.warn_on == name:
            self.errors += 1
            self._reply(f"\x01{path}: Permission denied\n".encode())
            return

        if kind == b"D":
            self._dirs.append(name)
            self.directories[path] = int(mode, 8)
        else:
            self._pending = {
                "path": path,
                "mode": int(mode, 8),
                "remaining": int(size) + 1,
                "data": b"",
            }
        self._reply(b"\0")


class FakeStdin:
    def __init__(self, channel: "FakeChannel") -> None:
        self._channel = channel
        self.closed = False

    def write(self, data: bytes) -> None:
        if self._channel.closed:
            raise OSError("Socket is closed")
        self._channel.sink.feed(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
        self._channel.shutdown_write()


class FakeChannel:
    """Stand-in for paramiko.Channel driving an ScpSink."""

    def __init__(
        self,
        exit_status: int = 0,
        stderr: bytes = b"",
        warn_on: Optional[str] = None,
        fail_on: Optional[str] = None,
        reject_greeting: Optional[str] = None,
    ) -> None:
        read_fd, write_fd = os.pipe()
        self._stdout = os.fdopen(read_fd, "rb")
        self._stdout_writer = os.fdopen(write_fd, "wb", buffering=0)
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.exit_status = exit_status
        self.stderr = stderr
        self.command: Optional[str] = None
        self.closed = False
        self.reject_greeting = reject_greeting
        self.sink = ScpSink(self._reply, warn_on=warn_on, fail_on=fail_on)

    def _reply(self, data: bytes) -> None:
        with self._lock:
            if not self._stdout_writer.closed:
                self._stdout_writer.write(data)
        if self.sink.failed:
            self.exit_status = 1
            self._finish()

    def _finish(self) -> None:
        with self._lock:
            if not self._stdout_writer.closed:
                self._stdout_writer.close()
        self._done.set()

    def makefile_stdin(self, mode: str) -> FakeStdin:
        return FakeStdin(self)

    def makefile(self, mode: str) -> Any:
        return self._stdout

    def makefile_stderr(self, mode: str) -> BytesIO:
        return BytesIO(self.stderr)

    def exec_command(self, command: str) -> None:
        self.command = command
        if self.reject_greeting is None:
            self._reply(b"\0")
            return
        # The receiver refuses its target and exits before reading anything
        self.sink.errors += 1
        self._reply(f"\x01{self.reject_greeting}\n".encode())
        self._finish()

    def shutdown_write(self) -> None:
        self._finish()

    def recv_exit_status(self) -> int:
        self._done.wait()
        if self.closed:
            return -1
        return 1 if self.sink.errors else self.exit_status

    def close(self) -> None:
        self.closed = True
        self._finish()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_ssh_client():
    """Build a mocked paramiko.SSHClient whose session is the given channel."""

    def factory(channel: FakeChannel) -> MagicMock:
        ssh_client = MagicMock()
        transport = ssh_client.get_transport.return_value
        transport.is_active.return_value = True
        transport.open_session.return_value = channel
        return ssh_client

    return factory


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Sample configuration for testing."""
    return {
        "bindings": {
            "web": {
                "hostname": "web.example.com",
                "port": 22,
                "username": "deploy",
                "password": "secret",
                "local_basepath": "/tmp/local",
                "remote_basepath": "/srv/www",
            },
            "backup": {
                "hostname": "backup.example.com",
                "username": "archive",
                "key_filename": "/home/archive/.ssh/id_ed25519",
                "local_basepath": "/tmp/local",
                "remote_basepath": "/data/backup",
                "preserve_times": False,
                "quiet": True,
            },
        },
    }


@pytest.fixture
def config_file(temp_dir: Path, sample_config: Dict[str, Any]) -> Path:
    """Create a temporary config file."""
    config_path = temp_dir / ".scpush.json"
    with open(config_path, "w") as f:
        json.dump(sample_config, f)
    return config_path


@pytest.fixture
def sample_tree(temp_dir: Path) -> Path:
    """
    Create a small tree with fixed permissions:

        site/
          assets/logo.png
          css/style.css
          empty/
          index.html
    """
    root = temp_dir / "site"
    (root / "assets").mkdir(parents=True)
    (root / "css").mkdir()
    (root / "empty").mkdir()

    (root / "index.html").write_text("<html></html>")
    (root / "css" / "style.css").write_text("body {}")
    (root / "assets" / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")

    for path in [root / "index.html", root / "css" / "style.css"]:
        os.chmod(path, 0o644)
    os.chmod(root / "assets" / "logo.png", 0o600)
    for path in [root, root / "assets", root / "css"]:
        os.chmod(path, 0o755)
    os.chmod(root / "empty", 0o700)
    return root
