"""
Single-document get/set over SQLAlchemy, plus the
transfer repository built on top of it.

No transactions span more than one document. Concurrent writers to the same
id are not serialized: the last committed set wins.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

import models
from database import SessionLocal
from exceptions import ProviderFailure
from transfer_model import Transfer

logger = logging.getLogger(__name__)

TRANSFERS_COLLECTION = "transfers"


class DocumentStore:

    def __init__(self, session_factory=SessionLocal, collection: str = TRANSFERS_COLLECTION):
        self._session_factory = session_factory
        self.collection = collection

    def get(self, doc_id: str) -> Optional[dict]:
        try:
            with self._session_factory() as db:
                row = db.get(models.Document, (self.collection, doc_id))
                return dict(row.body) if row else None
        except SQLAlchemyError as e:
            logger.error(f"Document GET failed for {self.collection}/{doc_id}: {e}")
            raise ProviderFailure("document-store", str(e)) from e

    def set(self, doc_id: str, document: dict, merge: bool = False) -> None:
        """Write a document. With merge, top-level keys are laid over the stored body."""
        try:
            with self._session_factory() as db:
                row = db.get(models.Document, (self.collection, doc_id))
                if row is None:
                    db.add(models.Document(collection=self.collection, id=doc_id, body=dict(document)))
                elif merge:
                    row.body = {**row.body, **document}
                else:
                    row.body = dict(document)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Document SET failed for {self.collection}/{doc_id}: {e}")
            raise ProviderFailure("document-store", str(e)) from e

    def ping(self) -> None:
        with self._session_factory() as db:
            db.query(models.Document).limit(1).all()


class TransferRepository:
    """Stores and loads Transfer entities by id. No business rules live here."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def get(self, transfer_id: str) -> Optional[Transfer]:
        doc = await asyncio.to_thread(self._store.get, transfer_id)
        if doc is None:
            return None
        return Transfer.from_document(transfer_id, doc)

    async def save(self, transfer: Transfer) -> None:
        await asyncio.to_thread(self._store.set, transfer.id, transfer.to_document())

    async def update(self, transfer_id: str, fields: dict) -> None:
        await asyncio.to_thread(self._store.set, transfer_id, fields, True)
