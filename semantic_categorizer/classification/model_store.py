"""
Persistence for trained classifiers, one per owner.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..database.engine import DatabaseManager
from ..database.models import TypingModel
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class StoredModel:
    """A persisted classifier row."""

    owner_id: int
    model_name: str
    vector_model: Optional[str]
    payload_json: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ModelStore:
    """Reads and upserts classifier payloads keyed by owner (project) id."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.db_manager = db_manager

    def get(self, owner_id: int) -> Optional[StoredModel]:
        with self.db_manager.get_session() as session:
            row = (
                session.query(TypingModel)
                .filter(TypingModel.project_id == owner_id)
                .first()
            )
            if row is None:
                return None
            return StoredModel(
                owner_id=row.project_id,
                model_name=row.model_name,
                vector_model=row.vector_model,
                payload_json=row.payload_json,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    def put(
        self,
        owner_id: int,
        model_name: str,
        vector_model: Optional[str],
        payload_json: str,
    ) -> StoredModel:
        """Insert or replace the owner's model."""
        if not payload_json:
            raise ValidationError("Model payload cannot be empty", field="payload_json")

        def _upsert():
            now = datetime.now()
            with self.db_manager.get_session() as session:
                row = (
                    session.query(TypingModel)
                    .filter(TypingModel.project_id == owner_id)
                    .first()
                )
                if row is None:
                    row = TypingModel(project_id=owner_id, created_at=now)
                    session.add(row)
                row.model_name = model_name
                row.vector_model = vector_model
                row.payload_json = payload_json
                row.updated_at = now
                session.flush()
                return StoredModel(
                    owner_id=owner_id,
                    model_name=model_name,
                    vector_model=vector_model,
                    payload_json=payload_json,
                    created_at=row.created_at,
                    updated_at=now,
                )

        stored = self.db_manager.execute_with_retry(_upsert)
        logger.info(f"Stored {model_name} model for owner {owner_id} ({vector_model})")
        return stored

    def delete(self, owner_id: int) -> bool:
        with self.db_manager.get_session() as session:
            deleted = (
                session.query(TypingModel)
                .filter(TypingModel.project_id == owner_id)
                .delete(synchronize_session=False)
            )
        return deleted > 0
