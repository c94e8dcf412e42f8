"""
BaseService -- abstract base for all kernel write services.

Responsibility:
    Common constructor and session contract for every service that
    mutates state.  Services use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    Transaction boundaries belong to the caller (the FieldTracker facade, a
    script, or a test).  A service never commits or rolls back, so a
    state change and its activity entries land in the same unit of work.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from steeltrack_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel write services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only query surfaces; those belong in
          ``steeltrack_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
