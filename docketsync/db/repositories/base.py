"""
Base repository with common operations.

Provides the row/model plumbing shared by concrete repositories.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Sequence, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import Table
from sqlalchemy.orm import Session

from docketsync.exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def models_to_jsonb(models: Sequence[BaseModel]) -> list[dict]:
    """Serialize list of Pydantic models for JSONB storage."""
    return [m.model_dump(mode="json") for m in models]


def jsonb_to_models(data: list[dict] | None, model_class: type[ModelT]) -> list[ModelT]:
    """Deserialize JSONB array to list of Pydantic models."""
    if data is None:
        return []
    return [model_class.model_validate(d) for d in data]


class BaseRepository(ABC, Generic[ModelT]):
    """
    Base repository with common operations.

    Subclasses must implement:
    - table property: Return the SQLAlchemy Table
    - _row_to_model: Convert database row to Pydantic model
    - _model_to_dict: Convert Pydantic model to database dict
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def table(self) -> Table:
        """SQLAlchemy table for this repository."""
        pass

    @abstractmethod
    def _row_to_model(self, row: Any) -> ModelT:
        """Convert database row to Pydantic model."""
        pass

    @abstractmethod
    def _model_to_dict(self, model: ModelT) -> dict:
        """Convert Pydantic model to database dict."""
        pass

    def _to_model(self, row: Any) -> ModelT:
        """Convert a row, reporting corrupt records as a domain ValidationError."""
        try:
            return self._row_to_model(row)
        except (PydanticValidationError, ValueError) as e:
            raise ValidationError(f"Stored {self.table.name} record is invalid: {e}")

    def create(self, model: ModelT) -> ModelT:
        """
        Create new entity.

        Args:
            model: Pydantic model to create

        Returns:
            Created model with database-generated fields
        """
        data = self._model_to_dict(model)
        stmt = self.table.insert().values(**data).returning(self.table)
        row = self.session.execute(stmt).fetchone()
        return self._to_model(row)

