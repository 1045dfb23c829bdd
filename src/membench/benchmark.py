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
Memory benchmark: write many points through a batching write API and
watch the process's resident memory.

Usage::

    python3 -m membench [num_points] [batch_size] [max_queue_size]

    python3 -m membench 100000 1000 0       # 100k points, unbounded queue
    python3 -m membench 100000 1000 10000   # 100k points, max queue 10k
    python3 -m membench 1000000 1000 50000  # 1M points

Requires a QuestDB server, by default on ``http://localhost:9000``.
See :class:`membench.client.ClientConfig` for the environment variables
that point the benchmark elsewhere.
"""

__all__ = [
    "BenchmarkConfig",
    "MemoryBenchmark",
    "leak_suspected",
    "main",
    "progress_percent",
    "parse_args",
]

import argparse
import contextlib
import gc
import logging
import random
import sys
import time
import traceback
from typing import Callable, List, Optional

from .client import Client, ClientConfig
from .errors import is_unreachable
from .memory import format_memory, rss_mb
from .point import Point, WritePrecision
from .write_api import WriteOptions, WriteType

DEFAULT_NUM_POINTS = 100_000
DEFAULT_BATCH_SIZE = 1_000
DEFAULT_MAX_QUEUE_SIZE = 0
FLUSH_INTERVAL_MS = 1_000
REPORT_INTERVAL_SEC = 5.0
SETTLE_SEC = 0.5

LEAK_THRESHOLD_MB = 50.0
LEAK_MAX_POINTS = 100_000

MEASUREMENT = 'sensor_data'
TRACEBACK_FRAMES = 5


class BenchmarkConfig:
    def __init__(
            self,
            num_points: int = DEFAULT_NUM_POINTS,
            batch_size: int = DEFAULT_BATCH_SIZE,
            max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE,
            flush_interval: int = FLUSH_INTERVAL_MS,
            report_interval: float = REPORT_INTERVAL_SEC,
            client: Optional[ClientConfig] = None,
            leak_threshold_mb: float = LEAK_THRESHOLD_MB,
            leak_max_points: int = LEAK_MAX_POINTS):
        self.num_points = num_points
        self.batch_size = batch_size
        self.max_queue_size = max_queue_size
        self.flush_interval = flush_interval
        self.report_interval = report_interval
        self.client = client or ClientConfig()
        self.leak_threshold_mb = leak_threshold_mb
        self.leak_max_points = leak_max_points

    def write_options(self) -> WriteOptions:
        return WriteOptions(
            write_type=WriteType.BATCHING,
            batch_size=self.batch_size,
            flush_interval=self.flush_interval,
            max_queue_size=self.max_queue_size)


def leak_suspected(
        initial_mb: float,
        final_mb: float,
        num_points: int,
        threshold_mb: float = LEAK_THRESHOLD_MB,
        max_points: int = LEAK_MAX_POINTS) -> bool:
    """
    Rough leak signal: more than ``threshold_mb`` retained after a run of
    at most ``max_points`` points.
    """
    return (final_mb - initial_mb) > threshold_mb and num_points <= max_points


def progress_percent(i: int, num_points: int) -> float:
    """Percentage complete after submitting point `i` (0-indexed)."""
    return (i + 1) / num_points * 100


def _thousands(n: int) -> str:
    return f'{n:,}'


class MemoryBenchmark:
    """
    The benchmark driver.

    All collaborators are injectable so the driver can run without a
    database or a real process table.
    """

    def __init__(
            self,
            config: BenchmarkConfig,
            client_factory: Callable[[ClientConfig], Client] = Client,
            memory: Callable[[], float] = rss_mb,
            clock: Callable[[], float] = time.monotonic,
            wall_clock: Callable[[], float] = time.time,
            sleep: Callable[[float], None] = time.sleep,
            collect: Callable[[], object] = gc.collect,
            rng: Optional[random.Random] = None,
            out=None):
        self.config = config
        self._client_factory = client_factory
        self._memory = memory
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._collect = collect
        self._rng = rng or random.Random()
        self._out = out
        self.submitted = 0
        self.elapsed = None

    def _print(self, line: str = ''):
        print(line, file=self._out or sys.stdout)

    def make_point(self, i: int, base_nanos: int) -> Point:
        return (Point(MEASUREMENT)
            .tag('sensor_id', f'sensor_{i % 100}')
            .tag('location', f'location_{i % 10}')
            .field('value', self._rng.random() * 100)
            .field('quality', self._rng.randrange(100))
            .at(base_nanos + i, WritePrecision.NANOSECOND))

    def progress_line(
            self,
            i: int,
            current_mb: float,
            peak_mb: float,
            elapsed: float) -> str:
        done = i + 1
        rate = done / elapsed if elapsed > 0 else 0.0
        return (
            '  Progress: %6.1f%% | Points: %8d | Memory: %s | '
            'Peak: %s | Rate: %6.0f pts/sec' % (
                progress_percent(i, self.config.num_points),
                done,
                format_memory(current_mb),
                format_memory(peak_mb),
                rate))

    def _banner(self):
        cfg = self.config
        queue_size = cfg.max_queue_size or 'unlimited'
        self._print('=' * 70)
        self._print('QuestDB Python Client Memory Benchmark')
        self._print('=' * 70)
        self._print()
        self._print('Configuration:')
        self._print(f'  Points to write:    {_thousands(cfg.num_points)}')
        self._print(f'  Batch size:         {cfg.batch_size}')
        self._print(f'  Max queue size:     {queue_size}')
        self._print(f'  Flush interval:     {cfg.flush_interval}ms')
        self._print(f'  QuestDB URL:        {cfg.client.url}')
        self._print(f'  Bucket:             {cfg.client.bucket}')
        self._print()
        self._print('-' * 70)

    def _write_points(self, write_api, initial_mb: float, start: float) -> float:
        cfg = self.config
        peak_mb = initial_mb
        last_report = start
        for i in range(cfg.num_points):
            base_nanos = int(self._wall_clock()) * 1_000_000_000
            write_api.write(self.make_point(i, base_nanos))
            self.submitted += 1

            now = self._clock()
            if now - last_report >= cfg.report_interval:
                current_mb = self._memory()
                peak_mb = max(peak_mb, current_mb)
                self._print(self.progress_line(
                    i, current_mb, peak_mb, now - start))
                last_report = self._clock()
        return peak_mb

    def _results(
            self,
            initial_mb: float,
            peak_mb: float,
            post_close_mb: float,
            final_mb: float) -> int:
        cfg = self.config
        elapsed = self.elapsed
        rate = cfg.num_points / elapsed if elapsed > 0 else 0.0
        self._print()
        self._print('-' * 70)
        self._print('Results:')
        self._print('-' * 70)
        self._print()
        self._print(f'  Total time:         {elapsed:.2f} seconds')
        self._print(f'  Points written:     {_thousands(cfg.num_points)}')
        self._print(f'  Write rate:         {rate:.0f} points/second')
        self._print()
        self._print('  Memory:')
        self._print(f'    Initial:          {format_memory(initial_mb)}')
        self._print(f'    Peak:             {format_memory(peak_mb)}')
        self._print(f'    After close:      {format_memory(post_close_mb)}')
        self._print(f'    After GC:         {format_memory(final_mb)}')
        self._print(
            f'    Memory increase:  '
            f'{format_memory(peak_mb - initial_mb)} (peak)')
        self._print(
            f'    Memory retained:  '
            f'{format_memory(final_mb - initial_mb)} (after GC)')
        self._print()
        self._print('=' * 70)

        if leak_suspected(
                initial_mb, final_mb, cfg.num_points,
                cfg.leak_threshold_mb, cfg.leak_max_points):
            retained = final_mb - initial_mb
            self._print('WARNING: Potential memory leak detected!')
            self._print(
                f'         Retained {format_memory(retained)} after GC '
                f'for only {cfg.num_points} points')
            return 1
        return 0

    def _report_unreachable(self):
        self._print()
        self._print('ERROR: Could not connect to QuestDB!')
        self._print()
        self._print('Make sure QuestDB is running:')
        self._print('  docker run -p 9000:9000 -p 9009:9009 questdb/questdb')
        self._print()
        self._print(
            'Or set the QUESTDB_URL environment variable '
            'to point to your QuestDB instance.')

    def _report_error(self, error: BaseException):
        self._print()
        self._print(f'ERROR: {type(error).__name__}: {error}')
        frames = traceback.format_tb(error.__traceback__)[-TRACEBACK_FRAMES:]
        self._print(''.join(frames).rstrip('\n'))

    def run(self) -> int:
        """Run the benchmark and return the process exit code."""
        self._banner()

        self._collect()
        initial_mb = self._memory()
        self._print(f'Initial memory: {format_memory(initial_mb)}')
        self._print()

        client = None
        try:
            client = self._client_factory(self.config.client)
            write_api = client.create_write_api(self.config.write_options())

            self._print('Writing points...')
            self._print()

            start = self._clock()
            peak_mb = self._write_points(write_api, initial_mb, start)

            self._print()
            self._print('All points queued. Waiting for flush...')

            pre_close_mb = self._memory()
            peak_mb = max(peak_mb, pre_close_mb)
            self._print(f'Memory before close: {format_memory(pre_close_mb)}')

            client.close()

            post_close_mb = self._memory()
            self._print(f'Memory after close:  {format_memory(post_close_mb)}')

            self._collect()
            self._sleep(SETTLE_SEC)
            final_mb = self._memory()

            self.elapsed = max(0.0, self._clock() - start)
            return self._results(initial_mb, peak_mb, post_close_mb, final_mb)
        except Exception as e:
            if is_unreachable(e):
                self._report_unreachable()
            else:
                self._report_error(e)
            return 1
        finally:
            if client is not None:
                with contextlib.suppress(Exception):
                    client.close()


def _non_negative_int(text: str) -> int:
    try:
        value = int(text.replace('_', ''))
    except ValueError:
        raise argparse.ArgumentTypeError(f'invalid integer: {text!r}')
    if value < 0:
        raise argparse.ArgumentTypeError(f'must be >= 0: {text!r}')
    return value


def _positive_int(text: str) -> int:
    value = _non_negative_int(text)
    if value == 0:
        raise argparse.ArgumentTypeError(f'must be > 0: {text!r}')
    return value


arg_parser = argparse.ArgumentParser(
    prog='membench',
    description='Measure memory growth while writing points to QuestDB.')

arg_parser.add_argument(
    'num_points', nargs='?', type=_non_negative_int,
    default=DEFAULT_NUM_POINTS,
    help=f'points to write (default: {DEFAULT_NUM_POINTS})')
arg_parser.add_argument(
    'batch_size', nargs='?', type=_positive_int,
    default=DEFAULT_BATCH_SIZE,
    help=f'rows per request (default: {DEFAULT_BATCH_SIZE})')
arg_parser.add_argument(
    'max_queue_size', nargs='?', type=_non_negative_int,
    default=DEFAULT_MAX_QUEUE_SIZE,
    help='max queued points, 0 for unlimited (default: 0)')
arg_parser.add_argument(
    '-v', '--verbose', action='store_true',
    help='log write API activity to stderr')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return arg_parser.parse_args(argv)


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format='%(asctime)s [%(levelname)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S')


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)
    config = BenchmarkConfig(
        num_points=args.num_points,
        batch_size=args.batch_size,
        max_queue_size=args.max_queue_size,
        client=ClientConfig.from_env())
    return MemoryBenchmark(config).run()
