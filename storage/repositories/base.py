"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Async session handling
- Error handling wrappers
- Dialect-aware INSERT ... ON CONFLICT statements
- Logging setup

============================================================
USAGE
============================================================
All domain repositories inherit from BaseRepository.
The session is injected via the constructor; the caller owns
the transaction (see Database.transaction()).

============================================================
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from storage.models.base import Base
from storage.repositories.exceptions import (
    ConnectionError,
    IntegrityError,
    QueryError,
    UnsupportedDialectError,
)


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Wraps database errors in repository exceptions
    - Builds conflict-tolerant inserts for the active dialect
    - Manages logging for all operations

    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: AsyncSession):
            super().__init__(session, MyModel, "MyRepository")

    ============================================================
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def dialect_name(self) -> str:
        return self._session.bind.dialect.name

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(
        self,
        error: Exception,
        operation: str,
        context: Optional[dict] = None
    ) -> None:
        """
        Wrap a database error in a repository exception.

        Raises:
            RepositoryException: Always raises appropriate exception
        """
        context = context or {}
        self._logger.error(
            f"Database error in {operation}: {error}",
            extra={"context": context},
        )

        if isinstance(error, OperationalError):
            raise ConnectionError(
                repository_name=self._repository_name,
                operation=operation,
                original_error=str(error)
            ) from error

        if isinstance(error, SQLAlchemyIntegrityError):
            raise IntegrityError(
                repository_name=self._repository_name,
                operation=operation,
                message=str(error.orig)
            ) from error

        raise QueryError(
            repository_name=self._repository_name,
            operation=operation,
            original_error=str(error)
        ) from error

    def _insert(self, model: Optional[Type[Base]] = None):
        """
        Dialect-specific INSERT supporting on_conflict_do_nothing /
        on_conflict_do_update.
        """
        model = model or self._model_class
        dialect = self.dialect_name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise UnsupportedDialectError(self._repository_name, dialect)

    async def _execute(self, stmt: Any, operation: str, context: Optional[dict] = None):
        try:
            return await self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._handle_db_error(e, operation, context)
            raise  # Never reached, but satisfies type checker

    async def _execute_query(self, stmt: Any, operation: str = "query") -> List[T]:
        result = await self._execute(stmt, operation)
        return list(result.scalars().all())

    async def _execute_scalar(self, stmt: Any, operation: str = "query_scalar") -> Any:
        result = await self._execute(stmt, operation)
        return result.scalar_one_or_none()
