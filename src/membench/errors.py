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
    "WriteApiClosedError",
    "is_unreachable",
]

from questdb.ingress import IngressError, IngressErrorCode


_UNREACHABLE_CODES = (
    IngressErrorCode.SocketError,
    IngressErrorCode.CouldNotResolveAddr)

_UNREACHABLE_MESSAGES = (
    "Could not detect server's line protocol version",
    'Connection refused',
    'connection refused')


class WriteApiClosedError(RuntimeError):
    """The write API was used after ``close()``."""


def _unreachable(exc: BaseException) -> bool:
    if isinstance(exc, ConnectionError):
        return True
    if isinstance(exc, IngressError):
        if exc.code in _UNREACHABLE_CODES:
            return True
        msg = str(exc)
        return any(part in msg for part in _UNREACHABLE_MESSAGES)
    return False


def is_unreachable(exc: BaseException) -> bool:
    """
    True if the error (or any error it was raised from) means that the
    database endpoint could not be reached at all.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        if _unreachable(exc):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False
