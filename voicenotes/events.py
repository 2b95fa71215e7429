"""Minimal synchronous publish/subscribe primitives.

Services expose two kinds of notifications:

* :class:`Signal` for one-off events such as "maximum duration reached".
* :class:`ObservableField` for state that views mirror, such as the live
  recording duration. Observers are called synchronously, in registration
  order, whenever the value actually changes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")

Receiver = Callable[..., None]


class Signal:
    def __init__(self) -> None:
        self._receivers: List[Receiver] = []

    def connect(self, receiver: Receiver) -> Receiver:
        self._receivers.append(receiver)
        return receiver

    def disconnect(self, receiver: Receiver) -> None:
        try:
            self._receivers.remove(receiver)
        except ValueError:
            logging.debug("Receiver %r was not connected", receiver)

    def emit(self, *args: Any, **kwargs: Any) -> None:
        for receiver in list(self._receivers):
            receiver(*args, **kwargs)

    def __len__(self) -> int:
        return len(self._receivers)


class ObservableField(Generic[T]):
    """Descriptor that notifies observers of the owning :class:`Observable`."""

    def __init__(self, default: T) -> None:
        self.default = default
        self.name = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Optional["Observable"], owner: type) -> Any:
        if instance is None:
            return self
        return instance.__dict__.get(self.name, self.default)

    def __set__(self, instance: "Observable", value: T) -> None:
        previous = instance.__dict__.get(self.name, self.default)
        instance.__dict__[self.name] = value
        if previous != value:
            instance._notify(self.name, value)


class Observable:
    """Mixin giving a class named, observable fields."""

    def _observers(self) -> Dict[str, List[Callable[[Any], None]]]:
        try:
            return self.__dict__["_field_observers"]
        except KeyError:
            observers: Dict[str, List[Callable[[Any], None]]] = {}
            self.__dict__["_field_observers"] = observers
            return observers

    def observe(self, name: str, callback: Callable[[Any], None]) -> Callable[[Any], None]:
        field = getattr(type(self), name, None)
        if not isinstance(field, ObservableField):
            raise AttributeError(f"{type(self).__name__} has no observable field {name!r}")
        self._observers().setdefault(name, []).append(callback)
        return callback

    def unobserve(self, name: str, callback: Callable[[Any], None]) -> None:
        callbacks = self._observers().get(name, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify(self, name: str, value: Any) -> None:
        for callback in list(self._observers().get(name, ())):
            callback(value)
