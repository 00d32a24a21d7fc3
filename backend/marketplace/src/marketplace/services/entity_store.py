"""Async keyed-record store for marketplace entities.

Wraps the synchronous DynamoDBService with ``asyncio.to_thread`` and maps
items to the pydantic models in ``marketplace.models``. Each model names its
table and key via ``TABLE`` / ``KEY`` class attributes; secondary lookups use
the GSI named ``<attribute>-index``.

Every update is conditional on the record existing, plus any ``expected``
state the caller passes. A failed condition returns None, which lets
concurrent or repeated webhook deliveries converge instead of overwriting
each other.
"""

import asyncio
from typing import Any, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from marketplace.models.errors import DependencyError, ErrorCode
from marketplace.services.dynamodb import DynamoDBService, get_dynamodb_service
from marketplace.utils.logging import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class _Expression:
    """Collects attribute name/value placeholders for one expression set."""

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}

    def name(self, attribute: str) -> str:
        for placeholder, existing in self.names.items():
            if existing == attribute:
                return placeholder
        placeholder = f"#n{len(self.names)}"
        self.names[placeholder] = attribute
        return placeholder

    def value(self, value: Any) -> str:
        placeholder = f":v{len(self.values)}"
        self.values[placeholder] = value
        return placeholder

    def equals(self, attribute: str, expected: Any) -> str:
        """Condition for one expected value; None means the attribute is absent."""
        name = self.name(attribute)
        if expected is None:
            return f"attribute_not_exists({name})"
        return f"{name} = {self.value(expected)}"

    def matches(self, attribute: str, expected: Any) -> str:
        """Condition for an expected value or a collection of allowed values."""
        if isinstance(expected, (list, tuple, set, frozenset)):
            options = [self.equals(attribute, option) for option in expected]
            return "(" + " OR ".join(options) + ")"
        return self.equals(attribute, expected)

    def lower_than(self, attribute: str, bound: Any) -> str:
        name = self.name(attribute)
        return f"(attribute_not_exists({name}) OR {name} < {self.value(bound)})"


class EntityStore:
    """Async create/get/filter/update over DynamoDB tables."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self._db = db or get_dynamodb_service()

    async def _call(self, fn: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error("DynamoDB call %s failed: %s", fn.__name__, e)
            raise DependencyError(
                ErrorCode.STORAGE_ERROR, details={"operation": fn.__name__}
            ) from e

    async def get(self, model: type[M], key_value: str) -> M | None:
        """Get a record by primary key.

        Args:
            model: Entity model class
            key_value: Primary key value

        Returns:
            Parsed model, or None when absent
        """
        item = await self._call(self._db.get_item, model.TABLE, {model.KEY: key_value})
        return model.model_validate(item) if item else None

    async def filter(self, model: type[M], attribute: str, value: str) -> list[M]:
        """List records whose indexed attribute equals ``value``."""
        items = await self._call(
            self._db.query_by_gsi,
            model.TABLE,
            f"{attribute}-index",
            attribute,
            value,
        )
        return [model.model_validate(item) for item in items]

    async def find_one(self, model: type[M], attribute: str, value: str) -> M | None:
        """First record whose indexed attribute equals ``value``, if any."""
        records = await self.filter(model, attribute, value)
        return records[0] if records else None

    async def create(self, record: BaseModel) -> bool:
        """Insert a record only if no record with its key exists.

        Returns:
            True if inserted, False if the key was already taken
        """
        model = type(record)
        expr = _Expression()
        condition = f"attribute_not_exists({expr.name(model.KEY)})"
        created: bool = await self._call(
            self._db.put_item,
            model.TABLE,
            record.model_dump(),
            condition_expression=condition,
            expression_attribute_names=expr.names,
        )
        return created

    async def put(self, record: BaseModel) -> None:
        """Unconditionally write a record."""
        await self._call(self._db.put_item, type(record).TABLE, record.model_dump())

    async def update(
        self,
        model: type[M],
        key_value: str,
        changes: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
        lower_than: dict[str, Any] | None = None,
    ) -> M | None:
        """Conditionally update a record.

        Args:
            model: Entity model class
            key_value: Primary key value
            changes: Attributes to set; a None value removes the attribute
            expected: Required current values. A value may be a collection of
                allowed values; None means the attribute must be absent.
            lower_than: Attributes that must be absent or strictly lower than
                the given bound

        Returns:
            The updated record, or None if it does not exist or a condition failed
        """
        expr = _Expression()
        sets: list[str] = []
        removes: list[str] = []
        for attribute, value in changes.items():
            if value is None:
                removes.append(expr.name(attribute))
            else:
                sets.append(f"{expr.name(attribute)} = {expr.value(value)}")

        parts: list[str] = []
        if sets:
            parts.append("SET " + ", ".join(sets))
        if removes:
            parts.append("REMOVE " + ", ".join(removes))

        conditions = [f"attribute_exists({expr.name(model.KEY)})"]
        conditions.extend(
            expr.matches(attribute, value) for attribute, value in (expected or {}).items()
        )
        conditions.extend(
            expr.lower_than(attribute, bound) for attribute, bound in (lower_than or {}).items()
        )

        attrs = await self._call(
            self._db.update_item,
            model.TABLE,
            {model.KEY: key_value},
            " ".join(parts),
            expression_attribute_values=expr.values or None,
            expression_attribute_names=expr.names,
            condition_expression=" AND ".join(conditions),
        )
        if attrs is None:
            logger.debug(
                "Conditional update skipped for %s %s (expected=%s)",
                model.TABLE,
                key_value,
                expected,
            )
            return None
        return model.model_validate(attrs)

    async def delete(self, model: type[BaseModel], key_value: str) -> None:
        await self._call(self._db.delete_item, model.TABLE, {model.KEY: key_value})


_entity_store_instance: EntityStore | None = None


def get_entity_store() -> EntityStore:
    """Get or create the shared EntityStore."""
    global _entity_store_instance
    if _entity_store_instance is None:
        _entity_store_instance = EntityStore()
    return _entity_store_instance


def reset_entity_store() -> None:
    """Reset the shared EntityStore (for testing only)."""
    global _entity_store_instance
    _entity_store_instance = None
