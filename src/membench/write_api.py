################################################################################
##     ___                  _   ____  ____
##    / _ \ _   _  ___  ___| |_|  _ \| __ )
##   | | | | | | |/ _ \/ __| __| | | |  _ \
##   | |_| | |_| |  __/\__ \ |_| |_| | |_) |
##    \__\_\\__,_|\___||___/\__|____/|____/
##
##  Copyright (c) 2014-2019 Appsicle
##  Copyright (c) 2019-2024 QuestDB
##
##  Licensed under the Apache License, Version 2.0 (the "License");
##  you may not use this file except in compliance with the License.
##  You may obtain a copy of the License at
##
##  http://www.apache.org/licenses/LICENSE-2.0
##
##  Unless required by applicable law or agreed to in writing, software
##  distributed under the License is distributed on an "AS IS" BASIS,
##  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
##  See the License for the specific language governing permissions and
##  limitations under the License.
##
################################################################################

"""
Batching write API on top of the ``questdb`` ILP sender.

Points handed to :func:`WriteApi.write` are queued and serialized into a
:class:`questdb.ingress.Buffer` by a background thread. The buffer is sent
once it holds ``batch_size`` rows or once ``flush_interval`` milliseconds
have passed since its first pending row.
"""

__all__ = [
    "WriteApi",
    "WriteOptions",
    "WriteType",
]

import logging
import queue
import threading
import time
from enum import Enum
from typing import Iterable, Optional, Union

import questdb.ingress as qi

from .errors import WriteApiClosedError
from .point import Point

logger = logging.getLogger(__name__)

_POLL_SEC = 0.1


class WriteType(Enum):
    """How :class:`WriteApi` delivers points."""

    IMMEDIATE = 'immediate'
    BATCHING = 'batching'


class WriteOptions:
    """
    Write configuration.

    :param write_type: :class:`WriteType.BATCHING` (default) or
        :class:`WriteType.IMMEDIATE`.
    :param batch_size: Rows per request in batching mode.
    :param flush_interval: Milliseconds after which a partial batch is sent.
    :param max_queue_size: Points that may wait in the queue before
        ``write`` blocks. ``0`` means unbounded.
    """

    def __init__(
            self,
            write_type: WriteType = WriteType.BATCHING,
            batch_size: int = 1000,
            flush_interval: int = 1000,
            max_queue_size: int = 0):
        if not isinstance(write_type, WriteType):
            write_type = WriteType(write_type)
        if batch_size < 1:
            raise ValueError(f'batch_size must be >= 1, not {batch_size}')
        if flush_interval < 1:
            raise ValueError(
                f'flush_interval must be >= 1, not {flush_interval}')
        if max_queue_size < 0:
            raise ValueError(
                f'max_queue_size must be >= 0, not {max_queue_size}')
        self.write_type = write_type
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_queue_size = max_queue_size

    def __repr__(self):
        return (
            f'WriteOptions(write_type={self.write_type.value!r}, '
            f'batch_size={self.batch_size}, '
            f'flush_interval={self.flush_interval}, '
            f'max_queue_size={self.max_queue_size})')


class _Control:
    """Queue marker asking the worker to flush, and optionally stop."""

    def __init__(self, stop: bool):
        self.stop = stop
        self.done = threading.Event()


class WriteApi:
    """
    Accepts points for eventual delivery to the database.

    Errors from a background flush are raised from the next call to
    :func:`write`, :func:`flush` or :func:`close`.
    """

    def __init__(
            self,
            sender: qi.Sender,
            write_options: Optional[WriteOptions] = None,
            bucket: Optional[str] = None,
            sender_lock: Optional[threading.Lock] = None):
        self._sender = sender
        self._sender_lock = sender_lock or threading.Lock()
        self._options = write_options or WriteOptions()
        self._bucket = bucket or None
        self._lock = threading.Lock()
        self._closed = False
        self._error: Optional[BaseException] = None
        self._written = 0
        self._batches = 0
        self._dropped = 0
        self._queue = queue.Queue(maxsize=self._options.max_queue_size)
        self._worker = None
        if self._options.write_type is WriteType.BATCHING:
            self._worker = threading.Thread(
                target=self._run,
                name='membench-write-api',
                daemon=True)
            self._worker.start()

    @property
    def write_options(self) -> WriteOptions:
        return self._options

    @property
    def written(self) -> int:
        """Rows sent successfully."""
        with self._lock:
            return self._written

    @property
    def batches(self) -> int:
        """Flush requests sent successfully."""
        with self._lock:
            return self._batches

    @property
    def dropped(self) -> int:
        """Points discarded after a failed flush."""
        with self._lock:
            return self._dropped

    @property
    def pending(self) -> int:
        """Approximate number of queued points."""
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: Union[Point, Iterable[Point]]):
        """
        Accept a point (or an iterable of points).

        In batching mode this blocks only while the queue is full. Once
        the call starts, every point of the iterable is accepted even if a
        background flush fails meanwhile: such points count as dropped.
        """
        points = (data,) if isinstance(data, Point) else data
        self._check_usable()
        for point in points:
            if self._worker is None:
                self._write_immediate(point)
            else:
                self._put(point)

    def flush(self):
        """Send every point accepted so far and wait for completion."""
        self._check_usable()
        if self._worker is not None:
            self._await(_Control(stop=False))
        self._raise_error()

    def close(self):
        """
        Flush all pending points and stop the worker.

        Idempotent: only the first call flushes or raises.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self._worker is not None:
            self._await(_Control(stop=True))
            self._worker.join()
        logger.debug(
            'Write API closed: %d rows in %d batches, %d dropped.',
            self._written, self._batches, self._dropped)
        self._raise_error()

    def __enter__(self) -> 'WriteApi':
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()

    def _check_usable(self):
        if self._closed:
            raise WriteApiClosedError('Write API is closed.')
        self._raise_error()

    def _raise_error(self):
        with self._lock:
            error = self._error
        if error is not None:
            raise error

    def _check_worker(self):
        if not self._worker.is_alive():
            self._raise_error()
            raise RuntimeError('Write API worker has stopped.')

    def _put(self, item):
        while True:
            try:
                self._queue.put(item, timeout=_POLL_SEC)
                return
            except queue.Full:
                self._check_worker()

    def _await(self, control: _Control):
        self._put(control)
        while not control.done.wait(_POLL_SEC):
            self._check_worker()

    def _append(self, buffer: qi.Buffer, point: Point):
        point.validate()
        nanos = point.timestamp_nanos()
        buffer.row(
            self._bucket or point.name,
            symbols=point.tags or None,
            columns=point.fields,
            at=qi.ServerTimestamp if nanos is None else qi.TimestampNanos(nanos))

    def _write_immediate(self, point: Point):
        buffer = self._sender.new_buffer()
        self._append(buffer, point)
        with self._sender_lock:
            self._sender.flush(buffer)
        with self._lock:
            self._written += 1
            self._batches += 1

    def _fail(self, error: BaseException, lost: int):
        with self._lock:
            if self._error is None:
                self._error = error
            self._dropped += lost
        logger.error('Write failed, %d points discarded: %s', lost, error)

    def _flush(self, buffer: qi.Buffer, rows: int) -> int:
        if not rows:
            return 0
        try:
            with self._sender_lock:
                self._sender.flush(buffer)
        except Exception as e:
            buffer.clear()
            self._fail(e, rows)
            return 0
        with self._lock:
            self._written += rows
            self._batches += 1
        logger.debug('Flushed batch of %d rows.', rows)
        return 0

    def _run(self):
        try:
            self._drain()
        except Exception as e:
            self._fail(e, 0)

    def _drain(self):
        batch_size = self._options.batch_size
        interval = self._options.flush_interval / 1000
        buffer = self._sender.new_buffer()
        rows = 0
        batch_started = 0.0
        while True:
            timeout = None
            if rows:
                timeout = max(0.0, batch_started + interval - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = None

            if isinstance(item, _Control):
                rows = self._flush(buffer, rows)
                item.done.set()
                if item.stop:
                    return
                continue

            if item is not None:
                if self._error is not None:
                    with self._lock:
                        self._dropped += 1
                else:
                    try:
                        self._append(buffer, item)
                    except Exception as e:
                        self._fail(e, 1)
                    else:
                        rows += 1
                        if rows == 1:
                            batch_started = time.monotonic()

            if rows and (
                    rows >= batch_size or
                    time.monotonic() - batch_started >= interval):
                rows = self._flush(buffer, rows)
