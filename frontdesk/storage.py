"""Transactional store used by the scheduler.

The allocation code only talks to ``TransactionalStore``. The SQLAlchemy
implementation maps deterministic-id creation onto primary-key
uniqueness, so the database guarantees that a single concurrent writer
wins a given id.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

from sqlalchemy import inspect as sa_inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


class DocumentExists(Exception):
    """A record already exists at the requested deterministic id."""


class WriteConflict(Exception):
    """A concurrent writer won the record; the current transaction is doomed."""


class TransactionalStore(ABC):
    @abstractmethod
    def get(self, model: type[T], key: Any, for_update: bool = False) -> T | None:
        ...

    @abstractmethod
    def find(self, model: type[T], *criteria, order_by=None, **equals) -> list[T]:
        ...

    @abstractmethod
    def create(self, record: T) -> T:
        ...

    @abstractmethod
    def conditional_create(self, record: T) -> T:
        ...

    @abstractmethod
    def update(self, record: T, **changes) -> T:
        ...

    @abstractmethod
    def delete(self, record: Any) -> None:
        ...

    @abstractmethod
    def run_atomic(self, work: Callable[['TransactionalStore'], T]) -> T:
        ...


class SqlAlchemyStore(TransactionalStore):
    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    def get(self, model, key, for_update=False):
        if for_update:
            return self.session.get(model, key, with_for_update=True)
        return self.session.get(model, key)

    def find(self, model, *criteria, order_by=None, **equals):
        statement = select(model).filter(*criteria).filter_by(**equals)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                statement = statement.order_by(*order_by)
            else:
                statement = statement.order_by(order_by)
        return list(self.session.scalars(statement).all())

    def create(self, record):
        self.session.add(record)
        self._flush(record)
        return record

    def conditional_create(self, record):
        identity = sa_inspect(type(record)).primary_key_from_instance(record)
        key = identity[0] if len(identity) == 1 else tuple(identity)
        if self.session.get(type(record), key) is not None:
            raise DocumentExists(f'{type(record).__name__} {key!r} already exists.')

        self.session.add(record)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise WriteConflict(f'{type(record).__name__} {key!r} was created concurrently.') from exc
        return record

    def update(self, record, **changes):
        for field, value in changes.items():
            setattr(record, field, value)
        self._flush(record)
        return record

    def delete(self, record):
        self.session.delete(record)
        self.session.flush()

    def _flush(self, record):
        # Unique constraints such as one active appointment per slot surface here.
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise WriteConflict(f'{type(record).__name__} write violates a uniqueness constraint.') from exc

    def run_atomic(self, work):
        if self._depth:
            return work(self)

        self._depth += 1
        try:
            result = work(self)
            self.session.commit()
            return result
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth -= 1
