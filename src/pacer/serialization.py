"""Conversion of `attrs` classes to and from plain Python data."""

from datetime import date, datetime
import typing

import attrs
import cattrs
import numpy as np
from typing_extensions import Self

from pacer.errors import DeserializationError, SerializationError, ValidationError


__all__ = ["Serializable", "SerializableT", "converter"]


converter = cattrs.Converter()

converter.register_unstructure_hook(np.ndarray, lambda value: value)
converter.register_structure_hook(np.ndarray, lambda value, _: np.asarray(value))
converter.register_unstructure_hook(datetime, lambda value: value.isoformat())


def _structure_datetime(value: typing.Any, _: typing.Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value)


converter.register_structure_hook(datetime, _structure_datetime)


class Serializable:
    """
    Mixin for `attrs` classes that can be dumped to, and loaded from,
    plain mappings (and hence any `DataStore`).
    """

    @classmethod
    def _check_serializable(cls) -> None:
        if not attrs.has(cls):
            raise ValidationError(
                f"{cls.__name__} must be an `attrs` class to be serializable"
            )

    def dump(self) -> typing.Dict[str, typing.Any]:
        """Dump the object to a dictionary."""
        self._check_serializable()
        try:
            return converter.unstructure(self)
        except Exception as exc:
            raise SerializationError(
                f"Failed to dump serializable object of type {type(self).__name__!r}"
            ) from exc

    @classmethod
    def load(cls, data: typing.Mapping[str, typing.Any]) -> Self:
        """Load an object from a mapping."""
        cls._check_serializable()
        try:
            return converter.structure(data, cls)
        except Exception as exc:
            raise DeserializationError(
                f"Failed to load serializable object of type {cls.__name__!r}"
            ) from exc


SerializableT = typing.TypeVar("SerializableT", bound=Serializable)
