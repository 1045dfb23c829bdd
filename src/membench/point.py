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
Immutable time-series points and timestamp precisions.
"""

__all__ = [
    "Point",
    "WritePrecision",
]

from enum import Enum
from typing import Dict, Optional, Union

FieldValue = Union[bool, int, float, str]
_FIELD_TYPES = (bool, int, float, str)


class TaggedEnum(Enum):
    """
    Base class for tagged enums.
    """

    @property
    def tag(self) -> str:
        """
        Short name.
        """
        return self.value[0]

    @classmethod
    def parse(cls, tag):
        """
        Parse from the tag name.
        """
        if tag is None:
            raise ValueError(f'{cls.__name__}: tag is None')
        if isinstance(tag, cls):
            return tag
        if not isinstance(tag, str):
            raise ValueError(
                f'{cls.__name__}: tag must be a string, '
                f'not {type(tag).__name__}')
        for entry in cls:
            if entry.tag == tag:
                return entry
        raise ValueError(f'{cls.__name__}: unknown tag {tag!r}')


class WritePrecision(TaggedEnum):
    """
    Unit of a point's integer timestamp.
    """

    SECOND = ('s', 1_000_000_000)
    MILLISECOND = ('ms', 1_000_000)
    MICROSECOND = ('us', 1_000)
    NANOSECOND = ('ns', 1)

    def to_nanos(self, value: int) -> int:
        return value * self.value[1]


class Point:
    """
    A single measurement: a name, string tags, typed fields and an
    optional timestamp.

    Points are immutable. The builder methods return a new point:

    .. code-block:: python

        point = (Point('sensor_data')
            .tag('sensor_id', 'sensor_1')
            .field('value', 21.5)
            .at(1700000000000000000))
    """

    __slots__ = ('_name', '_tags', '_fields', '_time', '_precision')

    def __init__(
            self,
            name: str,
            tags: Optional[Dict[str, Optional[str]]] = None,
            fields: Optional[Dict[str, FieldValue]] = None,
            time: Optional[int] = None,
            precision: WritePrecision = WritePrecision.NANOSECOND):
        self._name = name
        self._tags = {
            key: value
            for key, value in (tags or {}).items()
            if value is not None}
        self._fields = dict(fields or {})
        self._time = time
        self._precision = WritePrecision.parse(precision)

    @property
    def name(self) -> str:
        return self._name

    @property
    def tags(self) -> Dict[str, str]:
        return dict(self._tags)

    @property
    def fields(self) -> Dict[str, FieldValue]:
        return dict(self._fields)

    @property
    def time(self) -> Optional[int]:
        return self._time

    @property
    def precision(self) -> WritePrecision:
        return self._precision

    def tag(self, key: str, value: Optional[str]) -> 'Point':
        """Return a copy of this point with an extra tag."""
        return Point(
            self._name,
            {**self._tags, key: value},
            self._fields,
            self._time,
            self._precision)

    def field(self, key: str, value: FieldValue) -> 'Point':
        """Return a copy of this point with an extra field."""
        return Point(
            self._name,
            self._tags,
            {**self._fields, key: value},
            self._time,
            self._precision)

    def at(
            self,
            time: int,
            precision: WritePrecision = WritePrecision.NANOSECOND) -> 'Point':
        """Return a copy of this point with the given timestamp."""
        return Point(self._name, self._tags, self._fields, time, precision)

    def timestamp_nanos(self) -> Optional[int]:
        """
        The timestamp in nanoseconds, or ``None`` if the server
        should assign one.
        """
        if self._time is None:
            return None
        return self._precision.to_nanos(self._time)

    def validate(self):
        """
        Raise ``ValueError`` unless the point can be serialized: a non-empty
        name, at least one field, non-empty string keys, string tag values
        and bool, int, float or str field values.
        """
        if not isinstance(self._name, str) or not self._name:
            raise ValueError('Point name must be a non-empty string')
        if not self._fields:
            raise ValueError(f'Point {self._name!r} has no fields')
        for key in (*self._tags, *self._fields):
            if not isinstance(key, str) or not key:
                raise ValueError(
                    f'Point {self._name!r} has an empty or non-string '
                    f'tag or field key: {key!r}')
        for key, value in self._tags.items():
            if not isinstance(value, str):
                raise ValueError(
                    f'Point {self._name!r}: tag {key!r} must be a str, '
                    f'not {type(value).__name__}')
        for key, value in self._fields.items():
            if not isinstance(value, _FIELD_TYPES):
                raise ValueError(
                    f'Point {self._name!r}: field {key!r} must be a bool, '
                    f'int, float or str, not {type(value).__name__}')

    def __eq__(self, other):
        if not isinstance(other, Point):
            return NotImplemented
        return (
            self._name == other._name and
            self._tags == other._tags and
            self._fields == other._fields and
            self.timestamp_nanos() == other.timestamp_nanos())

    def __hash__(self):
        return hash((
            self._name,
            tuple(sorted(self._tags.items())),
            tuple(sorted(self._fields.items())),
            self.timestamp_nanos()))

    def __repr__(self):
        return (
            f'Point({self._name!r}, tags={self._tags!r}, '
            f'fields={self._fields!r}, time={self._time!r}, '
            f'precision={self._precision.tag!r})')
