from __future__ import annotations

"""SQL-backed chunk store using SQLAlchemy Core."""

import json
import logging
from datetime import timezone
from typing import Any, Iterable, Sequence

from docsense.rag.errors import ValidationError
from docsense.rag.types import Chunk, DocumentRecord
from docsense.vectorstore.base import check_store_dimension, validate_chunk_batch

logger = logging.getLogger(__name__)


class ChunkStoreError(RuntimeError):
    """Raised when chunk persistence fails."""
    pass


class SQLChunkStore:
    """Store documents and embedded chunks in a SQL database."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the chunk store and ensure tables exist."""
        try:
            from sqlalchemy import (
                Column,
                DateTime,
                ForeignKey,
                Integer,
                MetaData,
                String,
                Table,
                Text,
                create_engine,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ChunkStoreError("sqlalchemy is required to use the SQL chunk store") from exc

        self._engine = create_engine(connection_uri)
        self._metadata = MetaData()
        self._documents = Table(
            "documents",
            self._metadata,
            Column("document_id", String(64), primary_key=True),
            Column("owner_id", String(128), nullable=False, index=True),
            Column("file_name", String(255), nullable=False),
            Column("file_type", String(64), nullable=False),
            Column("file_size", Integer, nullable=False),
            Column("metadata", Text, nullable=True),
            Column("created_at", DateTime(timezone=True), nullable=False),
        )
        self._chunks = Table(
            "document_chunks",
            self._metadata,
            Column(
                "document_id",
                String(64),
                ForeignKey("documents.document_id", ondelete="CASCADE"),
                primary_key=True,
            ),
            Column("chunk_index", Integer, primary_key=True),
            Column("content", Text, nullable=False),
            Column("embedding", Text, nullable=False),
            Column("token_count", Integer, nullable=True),
            Column("metadata", Text, nullable=True),
        )
        self._metadata.create_all(self._engine)

    def put_chunks(self, document: DocumentRecord, chunks: Sequence[Chunk]) -> int:
        """Insert a document and its chunks in one transaction."""
        validate_chunk_batch(document, chunks)
        from sqlalchemy import select
        from sqlalchemy.exc import IntegrityError

        rows = [self._serialize_chunk(chunk) for chunk in chunks]
        try:
            with self._engine.begin() as conn:
                existing = conn.execute(
                    select(self._documents.c.document_id).where(
                        self._documents.c.document_id == document.document_id
                    )
                ).first()
                if existing is not None:
                    raise ValidationError(f"Document {document.document_id} already exists")
                check_store_dimension(self._stored_dimension(conn), chunks)
                conn.execute(self._documents.insert().values(**self._serialize_document(document)))
                conn.execute(self._chunks.insert(), rows)
        except IntegrityError as exc:
            raise ValidationError(f"Document {document.document_id} already exists") from exc
        logger.info(
            "chunks_stored",
            extra={"document_id": document.document_id, "chunks": len(rows)},
        )
        return len(rows)

    def get_document(self, document_id: str, owner_id: str | None = None) -> DocumentRecord | None:
        from sqlalchemy import select

        query = select(self._documents).where(self._documents.c.document_id == document_id)
        if owner_id is not None:
            query = query.where(self._documents.c.owner_id == owner_id)
        with self._engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return self._deserialize_document(row) if row is not None else None

    def list_documents(self, owner_id: str) -> list[DocumentRecord]:
        from sqlalchemy import select

        query = (
            select(self._documents)
            .where(self._documents.c.owner_id == owner_id)
            .order_by(self._documents.c.created_at, self._documents.c.document_id)
        )
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._deserialize_document(row) for row in rows]

    def get_chunks(
        self, document_ids: Iterable[str] | None, owner_id: str | None = None
    ) -> list[Chunk]:
        """Return chunks for the requested documents within the owner scope."""
        from sqlalchemy import select

        query = select(self._chunks).join(
            self._documents,
            self._documents.c.document_id == self._chunks.c.document_id,
        )
        if document_ids is not None:
            ids = sorted(set(document_ids))
            if not ids:
                return []
            query = query.where(self._chunks.c.document_id.in_(ids))
        if owner_id is not None:
            query = query.where(self._documents.c.owner_id == owner_id)
        query = query.order_by(self._chunks.c.document_id, self._chunks.c.chunk_index)
        with self._engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [self._deserialize_chunk(row) for row in rows]

    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its chunks."""
        with self._engine.begin() as conn:
            conn.execute(
                self._chunks.delete().where(self._chunks.c.document_id == document_id)
            )
            result = conn.execute(
                self._documents.delete().where(self._documents.c.document_id == document_id)
            )
        return bool(result.rowcount)

    def embedding_dimension(self) -> int | None:
        with self._engine.connect() as conn:
            return self._stored_dimension(conn)

    def _stored_dimension(self, conn) -> int | None:
        from sqlalchemy import select

        embedding = conn.execute(select(self._chunks.c.embedding).limit(1)).scalar()
        if embedding is None:
            return None
        return len(json.loads(embedding))

    def stats(self) -> dict[str, int | str]:
        """Return basic stats for the chunk store."""
        from sqlalchemy import func, select

        with self._engine.connect() as conn:
            documents = conn.execute(select(func.count()).select_from(self._documents)).scalar()
            chunks = conn.execute(select(func.count()).select_from(self._chunks)).scalar()
        return {
            "backend": "sql",
            "document_count": int(documents or 0),
            "chunk_count": int(chunks or 0),
        }

    def health(self) -> dict[str, str | bool]:
        """Return health information for the chunk store."""
        from sqlalchemy import text

        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning("chunk_store_unhealthy", extra={"error": str(exc)})
            return {"backend": "sql", "ok": False, "error": str(exc)}
        return {"backend": "sql", "ok": True}

    @staticmethod
    def _serialize_document(document: DocumentRecord) -> dict[str, Any]:
        metadata = None
        if document.metadata:
            metadata = json.dumps(document.metadata, ensure_ascii=True, default=str)
        return {
            "document_id": document.document_id,
            "owner_id": document.owner_id,
            "file_name": document.file_name,
            "file_type": document.file_type,
            "file_size": document.file_size,
            "metadata": metadata,
            "created_at": document.created_at,
        }

    @staticmethod
    def _serialize_chunk(chunk: Chunk) -> dict[str, Any]:
        metadata = None
        if chunk.metadata:
            metadata = json.dumps(chunk.metadata, ensure_ascii=True, default=str)
        return {
            "document_id": chunk.document_id,
            "chunk_index": chunk.chunk_index,
            "content": chunk.content,
            "embedding": json.dumps(chunk.embedding),
            "token_count": chunk.token_count,
            "metadata": metadata,
        }

    @staticmethod
    def _deserialize_document(row: Any) -> DocumentRecord:
        created_at = row["created_at"]
        # SQLite drops tzinfo on round trip.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return DocumentRecord(
            document_id=row["document_id"],
            owner_id=row["owner_id"],
            file_name=row["file_name"],
            file_type=row["file_type"],
            file_size=row["file_size"],
            created_at=created_at,
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )

    @staticmethod
    def _deserialize_chunk(row: Any) -> Chunk:
        return Chunk(
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            content=row["content"],
            embedding=[float(value) for value in json.loads(row["embedding"])],
            token_count=row["token_count"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )
