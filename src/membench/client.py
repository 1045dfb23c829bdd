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

__all__ = [
    "Client",
    "ClientConfig",
]

import logging
import os
import threading
from typing import List, Optional
from urllib.parse import urlsplit

import questdb.ingress as qi

from .write_api import WriteApi, WriteOptions

logger = logging.getLogger(__name__)

DEFAULT_URL = 'http://localhost:9000'
DEFAULT_TOKEN = ''
DEFAULT_ORG = 'my-org'
DEFAULT_BUCKET = 'sensor_data'

_DEFAULT_PORTS = {
    'http': 9000,
    'https': 9000,
    'tcp': 9009,
    'tcps': 9009,
}


def _conf_escape(value: str) -> str:
    """Escape a conf string value: a literal `;` is written as `;;`."""
    return value.replace(';', ';;')


class ClientConfig:
    """
    Connection settings.

    QuestDB has no organizations or buckets: ``bucket`` names the table
    points are written to and ``org`` is informational only.
    """

    def __init__(
            self,
            url: str = DEFAULT_URL,
            token: str = DEFAULT_TOKEN,
            org: str = DEFAULT_ORG,
            bucket: str = DEFAULT_BUCKET,
            retry_timeout: Optional[int] = None):
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self.retry_timeout = retry_timeout

    @classmethod
    def from_env(cls, environ=None) -> 'ClientConfig':
        """
        Read ``QUESTDB_URL``, ``QUESTDB_TOKEN``, ``QUESTDB_ORG`` and
        ``QUESTDB_BUCKET``, falling back to a local development server.
        """
        environ = os.environ if environ is None else environ
        return cls(
            url=environ.get('QUESTDB_URL') or DEFAULT_URL,
            token=environ.get('QUESTDB_TOKEN') or DEFAULT_TOKEN,
            org=environ.get('QUESTDB_ORG') or DEFAULT_ORG,
            bucket=environ.get('QUESTDB_BUCKET') or DEFAULT_BUCKET)

    def conf_string(self) -> str:
        """
        The ``questdb`` sender configuration string for this endpoint.

        Auto-flushing is disabled: batching is done by :class:`WriteApi`.
        """
        parts = urlsplit(self.url)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            raise ValueError(
                f'Unsupported URL scheme {parts.scheme!r} in {self.url!r}, '
                f'expected one of: {", ".join(_DEFAULT_PORTS)}')
        if not parts.hostname:
            raise ValueError(f'Missing host in URL {self.url!r}')
        port = parts.port or _DEFAULT_PORTS[scheme]
        conf = f'{scheme}::addr={parts.hostname}:{port};auto_flush=off;'
        if scheme.startswith('http'):
            if self.token:
                conf += f'token={_conf_escape(self.token)};'
            if self.retry_timeout is not None:
                conf += f'retry_timeout={self.retry_timeout};'
        return conf

    def __repr__(self):
        return (
            f'ClientConfig(url={self.url!r}, org={self.org!r}, '
            f'bucket={self.bucket!r})')


class Client:
    """
    Owns the ``questdb`` sender and every write API created from it.

    .. code-block:: python

        with Client.from_env() as client:
            write_api = client.create_write_api(WriteOptions(batch_size=500))
            write_api.write(point)
    """

    def __init__(self, config: Optional[ClientConfig] = None):
        self._config = config or ClientConfig()
        self._sender: Optional[qi.Sender] = None
        self._write_apis: List[WriteApi] = []
        self._sender_lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_env(cls) -> 'Client':
        return cls(ClientConfig.from_env())

    @property
    def config(self) -> ClientConfig:
        return self._config

    def _connect(self) -> qi.Sender:
        if self._sender is None:
            conf = self._config.conf_string()
            logger.debug('Connecting to %s', self._config.url)
            sender = qi.Sender.from_conf(conf)
            sender.establish()
            self._sender = sender
        return self._sender

    def create_write_api(
            self,
            write_options: Optional[WriteOptions] = None) -> WriteApi:
        """
        Create a write API sending to the configured bucket.

        The connection is established on the first call, so an unreachable
        endpoint raises here.
        """
        if self._closed:
            raise RuntimeError('Client is closed.')
        write_api = WriteApi(
            self._connect(),
            write_options=write_options,
            bucket=self._config.bucket,
            sender_lock=self._sender_lock)
        self._write_apis.append(write_api)
        return write_api

    def close(self):
        """
        Flush and close every write API, then disconnect.

        Idempotent. The first error hit whilst flushing is raised
        after the connection is closed.
        """
        if self._closed:
            return
        self._closed = True
        error = None
        for write_api in self._write_apis:
            try:
                write_api.close()
            except Exception as e:
                if error is None:
                    error = e
        self._write_apis.clear()
        if self._sender is not None:
            self._sender.close()
            self._sender = None
        if error is not None:
            raise error

    def __enter__(self) -> 'Client':
        return self

    def __exit__(self, _exc_type, _exc_val, _exc_tb):
        self.close()
