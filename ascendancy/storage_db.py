"""SQL-backed document store for secrets, council config, chat and debate history.

Documents are schemaless JSON records grouped into named collections, the
same shape the hosted document database exposes. `userId` is lifted into its
own column so per-user queries stay indexed.
"""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, Column, Integer, String, Text, DateTime, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL, COLLECTIONS
from .errors import PersistenceError
from .models import DebateResult

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredDocument(Base):
    """One JSON document in a collection."""
    __tablename__ = "documents"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, index=True, nullable=False)
    collection = Column(String(255), index=True, nullable=False)
    user_id = Column(String(255), index=True, nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)
    data = Column(Text, default="{}")  # JSON-encoded document body

    def to_dict(self) -> Dict[str, Any]:
        doc = json.loads(self.data)
        doc["$id"] = self.id
        doc["$createdAt"] = self.created_at.isoformat()
        return doc


class DocumentStore:
    """Minimal document database: list, search and create."""

    def __init__(self, database_url: str):
        # Railway uses postgres:// but SQLAlchemy needs postgresql://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        if database_url.startswith("sqlite:///") and database_url != "sqlite:///:memory:":
            directory = os.path.dirname(database_url[len("sqlite:///"):])
            if directory:
                os.makedirs(directory, exist_ok=True)

        self.engine = create_engine(database_url)
        self.Session = sessionmaker(bind=self.engine)
        Base.metadata.create_all(self.engine)

    def create_document(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document and return it with its generated id."""
        session = self.Session()
        try:
            doc = StoredDocument(
                id=uuid.uuid4().hex,
                collection=collection,
                user_id=data.get("userId"),
                created_at=_utcnow(),
                data=json.dumps(data, default=str, ensure_ascii=False),
            )
            session.add(doc)
            session.commit()
            return doc.to_dict()
        finally:
            session.close()

    def list_documents(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """List documents newest first, keeping those whose fields equal `filters`."""
        filters = dict(filters or {})
        session = self.Session()
        try:
            query = session.query(StoredDocument).filter_by(collection=collection)
            if "userId" in filters:
                query = query.filter_by(user_id=filters.pop("userId"))
            rows = query.order_by(StoredDocument.created_at.desc(), StoredDocument.pk.desc()).all()
        finally:
            session.close()

        docs = [row.to_dict() for row in rows]
        docs = [d for d in docs if all(d.get(k) == v for k, v in filters.items())]
        docs = docs[offset:]
        return docs[:limit] if limit is not None else docs

    def search_documents(
        self,
        collection: str,
        field_name: str,
        query: str,
        user_id: Optional[str] = None,
        limit: int = 5,
    ) -> List[Dict[str, Any]]:
        """Full-text search on one field, ranked by how often the query terms occur."""
        terms = [t.lower() for t in query.split() if len(t) > 1]
        if not terms:
            return []

        session = self.Session()
        try:
            q = session.query(StoredDocument).filter_by(collection=collection)
            if user_id is not None:
                q = q.filter_by(user_id=user_id)
            q = q.filter(or_(*[StoredDocument.data.ilike(f"%{t}%") for t in terms]))
            rows = q.all()
        finally:
            session.close()

        scored = []
        for row in rows:
            doc = row.to_dict()
            text = str(doc.get(field_name, "")).lower()
            score = sum(text.count(t) for t in terms)
            if score:
                scored.append((score, doc))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [doc for _, doc in scored[:limit]]


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """Return the process-wide store for DATABASE_URL, creating it on first use."""
    global _store
    if _store is None:
        _store = DocumentStore(DATABASE_URL)
    return _store


def get_user_secrets(store: DocumentStore, user_id: Optional[str]) -> Dict[str, str]:
    """Map keyName -> keyValue for a user. The newest value of each key wins."""
    if not user_id:
        return {}

    secrets: Dict[str, str] = {}
    for doc in store.list_documents(COLLECTIONS["secrets"], {"userId": user_id}):
        name = doc.get("keyName")
        if name and name not in secrets and doc.get("keyValue"):
            secrets[name] = doc["keyValue"]
    return secrets


def save_debate(store: DocumentStore, result: DebateResult) -> Union[Dict[str, Any], PersistenceError]:
    collection = COLLECTIONS["debate_history"]
    try:
        return store.create_document(collection, result.to_document())
    except SQLAlchemyError as e:
        return PersistenceError(collection, str(e))


def add_chat_message(
    store: DocumentStore,
    user_id: str,
    role: str,
    content: str,
) -> Union[Dict[str, Any], PersistenceError]:
    collection = COLLECTIONS["chat_history"]
    try:
        return store.create_document(collection, {
            "userId": user_id,
            "role": role,
            "message": content,
            "timestamp": _utcnow().isoformat(),
        })
    except SQLAlchemyError as e:
        return PersistenceError(collection, str(e))


def list_debates(
    store: DocumentStore,
    user_id: Optional[str] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Debate history, newest first. Without a user id the listing is unscoped."""
    filters = {"userId": user_id} if user_id else None
    return store.list_documents(COLLECTIONS["debate_history"], filters, limit=limit, offset=offset)
