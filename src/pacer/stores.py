"""Storage backends for schedules, configurations and output snapshots."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
import functools
import logging
from os import PathLike
from pathlib import Path
import typing

import numpy as np
import orjson
from typing_extensions import ParamSpec, Self
import yaml

from pacer.errors import StorageError, ValidationError
from pacer.serialization import Serializable, SerializableT


__all__ = [
    "DataStore",
    "new_store",
    "storage_backend",
    "JSONStore",
    "YAMLStore",
    "StoreSerializable",
]

logger = logging.getLogger(__name__)


class DataStore(typing.Generic[SerializableT], ABC):
    """Abstract base class for data storage classes."""

    @abstractmethod
    def load(
        self, typ: typing.Type[SerializableT], *args, **kwargs
    ) -> typing.Iterable[SerializableT]: ...

    @abstractmethod
    def dump(self, data: typing.Iterable[SerializableT], *args, **kwargs) -> None: ...


StoreT = typing.TypeVar("StoreT", bound=DataStore)

_STORAGE_BACKENDS: typing.Dict[str, typing.Type[DataStore]] = {}


def storage_backend(
    *names: str,
) -> typing.Callable[[typing.Type[StoreT]], typing.Type[StoreT]]:
    """
    Data store registration decorator.

    :param names: Names (usually file extensions) to register the store under.
    """

    def _decorator(store_cls: typing.Type[StoreT]) -> typing.Type[StoreT]:
        for name in names:
            _STORAGE_BACKENDS[name] = store_cls
        return store_cls

    return _decorator


def _validate_filepath(
    filepath: typing.Union[PathLike, str],
    expected_extensions: typing.Sequence[str],
) -> Path:
    """
    Validate and normalize a filepath for a file-based store.

    A missing extension is replaced by the first expected extension.

    :param filepath: Path to validate
    :param expected_extensions: Accepted file extensions (e.g. '.json')
    :return: Validated Path object
    :raises StorageError: If filepath is invalid or has wrong extension
    """
    path = Path(filepath)
    if not str(filepath).strip():
        raise StorageError("Filepath cannot be empty")

    if "\x00" in str(path):
        raise StorageError("Filepath contains null characters")

    if not path.suffix:
        path = path.with_suffix(expected_extensions[0])
        logger.debug(f"Added extension: {path}")
    elif path.suffix.lower() not in expected_extensions:
        raise StorageError(
            f"Expected file extension {' or '.join(expected_extensions)!s}, got '{path.suffix}'. "
            f"Use '{path.with_suffix(expected_extensions[0])}' instead."
        )
    return path


def _ensure_parent(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created parent directory: {path.parent}")


P = ParamSpec("P")
R = typing.TypeVar("R")


def _raise_storage_error(func: typing.Callable[P, R]) -> typing.Callable[P, R]:
    """Wraps a function to raise StorageError on exceptions."""

    @functools.wraps(func)
    def _wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(exc) from exc

    return _wrapper


def _normalize_for_storage(value: typing.Any) -> typing.Any:
    """Convert numpy containers and scalars into plain Python values."""
    if isinstance(value, np.ndarray):
        return value.tolist()
    elif isinstance(value, np.generic):
        return value.item()
    elif isinstance(value, Mapping):
        return {k: _normalize_for_storage(v) for k, v in value.items()}
    elif isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [_normalize_for_storage(v) for v in value]
    return value


def _load_items(
    typ: typing.Type[SerializableT], data: typing.Any
) -> typing.Generator[SerializableT, None, None]:
    if data is None:
        return
    if isinstance(data, Mapping):
        data = [data]
    for item in data:
        yield typ.load(item)


@storage_backend("json")
class JSONStore(DataStore[SerializableT]):
    """JSON-based storage, backed by `orjson`."""

    def __init__(self, filepath: typing.Union[PathLike, str]) -> None:
        """
        Initialize the store

        :param filepath: Path to the JSON file
        :raises StorageError: If filepath is invalid or has wrong extension
        """
        self.filepath = _validate_filepath(filepath, expected_extensions=(".json",))

    @_raise_storage_error
    def dump(  # type: ignore[override]
        self, data: typing.Iterable[SerializableT], **kwargs: typing.Any
    ) -> None:
        """
        Dump items as a JSON array, replacing the file content.

        :param data: Iterable of serializable instances to dump
        """
        data_list = [item.dump() for item in data]
        _ensure_parent(self.filepath)
        with open(self.filepath, "wb") as f:
            f.write(
                orjson.dumps(
                    data_list,
                    option=orjson.OPT_SERIALIZE_NUMPY
                    | orjson.OPT_INDENT_2
                    | orjson.OPT_NON_STR_KEYS,
                )
            )

    @_raise_storage_error
    def load(  # type: ignore[override]
        self, typ: typing.Type[SerializableT], **kwargs: typing.Any
    ) -> typing.List[SerializableT]:
        """
        Load items from the JSON file.

        :param typ: Type of the serializable objects to load
        :return: List of instances of the specified type
        """
        with open(self.filepath, "rb") as f:
            content = f.read()
        if not content.strip():
            return []
        return list(_load_items(typ, orjson.loads(content)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(filepath={str(self.filepath)!r})"


@storage_backend("yaml", "yml")
class YAMLStore(DataStore[SerializableT]):
    """
    YAML-based storage.

    Human-readable format, good for configs, schedules and debugging.
    """

    def __init__(self, filepath: typing.Union[PathLike, str]) -> None:
        """
        Initialize the store

        :param filepath: Path to the YAML file
        :raises StorageError: If filepath is invalid or has wrong extension
        """
        self.filepath = _validate_filepath(
            filepath, expected_extensions=(".yaml", ".yml")
        )

    @_raise_storage_error
    def dump(  # type: ignore[override]
        self, data: typing.Iterable[SerializableT], **kwargs: typing.Any
    ) -> None:
        """
        Dump items as a YAML sequence, replacing the file content.

        :param data: Iterable of serializable instances to dump
        """
        data_list = [_normalize_for_storage(item.dump()) for item in data]
        _ensure_parent(self.filepath)
        with open(self.filepath, "w", encoding="utf-8") as f:
            yaml.safe_dump(data_list, f, sort_keys=False)

    @_raise_storage_error
    def load(  # type: ignore[override]
        self, typ: typing.Type[SerializableT], **kwargs: typing.Any
    ) -> typing.List[SerializableT]:
        """
        Load items from the YAML file.

        A file holding a single mapping is read as one item.

        :param typ: Type of the serializable objects to load
        :return: List of instances of the specified type
        """
        with open(self.filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return list(_load_items(typ, data))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(filepath={str(self.filepath)!r})"


def new_store(
    backend: typing.Union[str, typing.Literal["json", "yaml", "yml"]],
    *args: typing.Any,
    **kwargs: typing.Any,
) -> DataStore:
    """
    Create a new data store.

    :param backend: Storage backend to use ('json', 'yaml')
    :param args: Additional positional arguments for the store constructor
    :param kwargs: Additional keyword arguments for the store constructor
    :return: An instance of the selected `DataStore` backend

    Example:
    ```python
    store = new_store("json", "snapshots.json")
    store.dump(snapshots)
    loaded = store.load(Snapshot)
    ```
    """
    if backend not in _STORAGE_BACKENDS:
        raise ValidationError(
            f"Unknown backend: {backend}. Choose from {list(_STORAGE_BACKENDS.keys())}"
        )

    store_class = _STORAGE_BACKENDS[backend]
    return store_class(*args, **kwargs)


def store_for(filepath: typing.Union[str, PathLike]) -> DataStore:
    """Create the store matching a file's extension."""
    path = Path(filepath)
    return new_store(path.suffix.lower().lstrip("."), path)


class StoreSerializable(Serializable):
    """Serializable mixin with built-in store/file support."""

    @classmethod
    def from_store(
        cls, store: DataStore[Self], **load_kwargs: typing.Any
    ) -> typing.Optional[Self]:
        """
        Load the first instance held by a `DataStore`.

        :param store: `DataStore` to load from.
        :return: Loaded instance, or None if the store is empty.
        """
        return next(iter(store.load(cls, **load_kwargs)), None)

    def to_store(self, store: DataStore[Self], **dump_kwargs: typing.Any) -> None:
        """
        Dump the instance to a `DataStore`.

        :param store: `DataStore` to dump to.
        """
        store.dump([self], **dump_kwargs)

    @classmethod
    def from_file(
        cls, filepath: typing.Union[str, PathLike], **load_kwargs: typing.Any
    ) -> typing.Optional[Self]:
        """
        Load an instance from a file. The backend is chosen by extension.

        :param filepath: Path to the file to load from.
        :return: Loaded instance, or None if the file holds no data.
        """
        return cls.from_store(store_for(filepath), **load_kwargs)

    def to_file(
        self, filepath: typing.Union[str, PathLike], **dump_kwargs: typing.Any
    ) -> None:
        """
        Dump the instance to a file. The backend is chosen by extension.

        :param filepath: Path to the file to dump to.
        """
        self.to_store(store_for(filepath), **dump_kwargs)
