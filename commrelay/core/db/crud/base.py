from datetime import datetime, timezone
from typing import Any, Callable, Generic, Sequence, Type, TypeVar

from sqlalchemy import ColumnElement, SQLColumnExpression
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from commrelay.core.exceptions.types import DatabaseException

T = TypeVar("T")

# Dialects with an INSERT ... ON CONFLICT ... DO UPDATE construct
_UPSERT_INSERTS: dict[str, Callable[..., Any]] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class BaseDB(Generic[T]):
    def __init__(self, model: Type[T]):
        self.model = model

    async def get_by_id(
        self, session: AsyncSession, id: Any, populate_existing: bool = False
    ) -> T | None:
        """
        Asynchronously retrieves an instance of the model by its primary key.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            id (Any): The primary key value of the model instance to retrieve.
            populate_existing (bool, optional): Overwrite an instance already present
                in the session's identity map with the row from the database.

        Returns:
            T | None: The model instance if found, otherwise None.

        Raises:
            DatabaseException: If an error occurs while querying the database.
        """
        try:
            return await session.get(
                self.model, id, populate_existing=populate_existing
            )
        except SQLAlchemyError as e:
            raise DatabaseException(
                f"Error retrieving {self.model.__name__} with ID {id}: {str(e)}"
            ) from e

    async def get_by_filters(
        self,
        session: AsyncSession,
        filters: dict,
        order_by: list[SQLColumnExpression] | None = None,
    ) -> Sequence[T]:
        """
        Asynchronously retrieves records of the model that match the given filters.

        Args:
            session (AsyncSession): The asynchronous database session to use for the query.
            filters (dict): A dictionary of equality filter conditions to apply to the query.
            order_by (list[SQLColumnExpression] | None, optional): Expressions to order the results by.

        Returns:
            Sequence[T]: A sequence containing instances of the model that match the filters.

        Raises:
            DatabaseException: If an error occurs while querying the database.
        """
        try:
            stmt = select(self.model).filter_by(**filters)
            if order_by:
                stmt = stmt.order_by(*order_by)
            result = await session.execute(stmt)
            return result.scalars().all()
        except (SQLAlchemyError, ValueError) as e:
            raise DatabaseException(
                f"Error retrieving {self.model.__name__} with filters {filters}: {str(e)}"
            ) from e

    async def upsert(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        unique_fields: list[str],
        exclude_from_update: list[str] | None = None,
        update_where: ColumnElement[bool] | None = None,
        update_overrides: Callable[[Any], dict[str, Any]] | None = None,
        commit_self: bool = True,
    ) -> T:
        """
        Upsert a record using INSERT ... ON CONFLICT ... DO UPDATE.

        Inserts a new record if none exists for ``unique_fields``, otherwise
        updates the existing one. When ``update_where`` is given the update
        only applies to existing rows matching it; rows that do not match are
        left untouched and returned as they are.

        Args:
            session: Database session.
            data: Column values to set on the record.
            unique_fields: Columns forming the unique constraint used for conflict detection.
            exclude_from_update: Columns never overwritten on conflict.
                Defaults to ``created_at`` plus the unique fields.
            update_where: Condition on the existing row that must hold for the update to apply.
            update_overrides: Called with the statement's ``excluded`` columns; the
                returned expressions replace the plain overwrite for those columns.
            commit_self: Whether to commit after the operation.

        Returns:
            The record as stored after the operation.

        Raises:
            DatabaseException: If an error occurs during the operation or the
                dialect has no upsert construct.
            ValueError: If any unique field is missing from data.
        """
        for field in unique_fields:
            if field not in data:
                raise ValueError(
                    f"Unique field '{field}' must be present in data for upsert"
                )

        dialect = session.bind.dialect.name if session.bind is not None else ""
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise DatabaseException(f"Upsert is not supported on dialect '{dialect}'")

        try:
            default_exclude = {"created_at", *unique_fields}
            if exclude_from_update:
                default_exclude.update(exclude_from_update)

            now = datetime.now(timezone.utc)
            insert_data = dict(data)
            if hasattr(self.model, "created_at") and "created_at" not in insert_data:
                insert_data["created_at"] = now
            if hasattr(self.model, "updated_at") and "updated_at" not in insert_data:
                insert_data["updated_at"] = now

            stmt = insert(self.model).values(**insert_data)
            update_set = {
                k: stmt.excluded[k]
                for k in insert_data
                if k not in default_exclude
            }
            if update_overrides is not None:
                update_set.update(update_overrides(stmt.excluded))
            stmt = stmt.on_conflict_do_update(
                index_elements=unique_fields,
                set_=update_set,
                where=update_where,
            )

            await session.execute(stmt)

            if commit_self:
                await session.commit()
            else:
                await session.flush()

            key = tuple(insert_data[field] for field in unique_fields)
            instance = await session.get(
                self.model,
                key[0] if len(key) == 1 else key,
                populate_existing=True,
            )
            if instance is None:
                raise DatabaseException(
                    f"{self.model.__name__} missing after upsert of {key}"
                )
            return instance

        except SQLAlchemyError as e:
            if commit_self:
                await session.rollback()
            raise DatabaseException(
                f"Error upserting {self.model.__name__}: {str(e)}"
            ) from e
