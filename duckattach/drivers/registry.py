"""Registry mapping each data source kind to its attachment driver."""

from typing import Callable, Dict, Type, TypeVar

from duckattach.models import DataSourceConfig, DataSourceKind

T = TypeVar("T")

_DRIVERS: Dict[DataSourceKind, type] = {}


def register_driver(kind: DataSourceKind) -> Callable[[Type[T]], Type[T]]:
    """Class decorator registering a driver for ``kind``."""

    def decorator(driver_class: Type[T]) -> Type[T]:
        if kind in _DRIVERS and _DRIVERS[kind] is not driver_class:
            raise ValueError(f"A driver is already registered for '{kind.value}'")
        _DRIVERS[kind] = driver_class
        return driver_class

    return decorator


def get_driver_class(kind: DataSourceKind) -> type:
    try:
        return _DRIVERS[kind]
    except KeyError:
        raise ValueError(f"No attachment driver registered for '{kind.value}'")


def get_driver(kind: DataSourceKind, **kwargs):
    """Instantiate the driver registered for ``kind``."""
    return get_driver_class(kind)(**kwargs)


def driver_for(config: DataSourceConfig):
    return get_driver(config.kind)


def missing_drivers():
    """Kinds without a registered driver; empty once all drivers are imported."""
    return [kind for kind in DataSourceKind if kind not in _DRIVERS]
