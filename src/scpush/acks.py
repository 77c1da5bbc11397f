"""
Acknowledgment handling for scpush.

The receiver answers every record with one status byte. AckMonitor reads
those bytes on a worker thread while the encoder keeps writing, so neither
side can stall on a full channel buffer.
"""

import logging
import threading
from typing import BinaryIO, Optional

from scpush.exceptions import RemoteError, ScpError, SessionError

logger = logging.getLogger(__name__)

DEFAULT_ACK_WINDOW = 16

STATUS_OK = b"\x00"
STATUS_WARNING = b"\x01"
STATUS_FATAL = b"\x02"


class AckMonitor:
    """
    Bounded window of unacknowledged records.

    The encoder calls expect() before every record it writes; run() is the
    reader loop and must be started on its own thread. The receiver's
    greeting byte answers the command start, so one reply is pending from
    the beginning.

    Any reply other than OK ends the transfer. The receiver's message is
    kept as a RemoteError whose `fatal` flag tells a `\\2` apart from a
    `\\1`.
    """

    def __init__(self, stream: BinaryIO, window: int = DEFAULT_ACK_WINDOW) -> None:
        if window < 1:
            raise ValueError("ack window must be at least 1")
        self._stream = stream
        self._window = window
        self._cond = threading.Condition()
        self._sent = 1
        self._acknowledged = 0
        self._error: Optional[ScpError] = None
        self._finished = False

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._sent - self._acknowledged

    @property
    def finished(self) -> bool:
        with self._cond:
            return self._finished

    def run(self) -> None:
        """Read status bytes until EOF or the first error reply."""
        try:
            while True:
                status = self._stream.read(1)
                if not status:
                    break
                if status == STATUS_OK:
                    logger.debug("Received SCP OK")
                    self._acknowledge()
                    continue

                line = self._stream.readline()
                if not line.endswith(b"\n"):
                    self._fail(SessionError("connection lost while reading a reply"))
                    return
                if status not in (STATUS_WARNING, STATUS_FATAL):
                    line = status + line
                message = line[:-1].decode("utf-8", "replace")

                logger.debug("Received SCP error status %r: %s", status, message)
                self._fail(RemoteError(message, fatal=status != STATUS_WARNING))
                return

            pending = self.outstanding
            if pending > 0:
                self._fail(
                    SessionError(
                        "remote scp closed its output with "
                        f"{pending} record(s) unacknowledged"
                    )
                )
        except (OSError, EOFError) as exc:
            self._fail(SessionError(f"Failed to read from remote scp: {exc}"))
        finally:
            with self._cond:
                self._finished = True
                self._cond.notify_all()

    def expect(self) -> None:
        """Reserve a slot for one more record, waiting while the window is full."""
        with self._cond:
            while (
                self._error is None
                and not self._finished
                and self._sent - self._acknowledged >= self._window
            ):
                self._cond.wait()
            self._raise_if_failed()
            if self._finished:
                raise SessionError("remote scp closed its output")
            self._sent += 1

    def drain(self) -> None:
        """Wait until every record written so far has been acknowledged."""
        with self._cond:
            while (
                self._error is None
                and not self._finished
                and self._acknowledged < self._sent
            ):
                self._cond.wait()
            self._raise_if_failed()
            if self._acknowledged < self._sent:
                raise SessionError("remote scp closed its output")

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._finished, timeout=timeout)

    def check(self) -> None:
        """Raise the receiver's error, if one was reported."""
        with self._cond:
            self._raise_if_failed()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error

    def _acknowledge(self) -> None:
        with self._cond:
            self._acknowledged += 1
            self._cond.notify_all()

    def _fail(self, error: ScpError) -> None:
        with self._cond:
            if self._error is None:
                self._error = error
            self._cond.notify_all()
