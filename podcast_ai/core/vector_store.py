"""
Chroma vector store client.
Thin wrapper over the chromadb HTTP client exposing the four operations
the pipeline needs: heartbeat, upsert, query, delete_where.
"""

import logging
import threading
from typing import Any

import chromadb
from chromadb.config import Settings

from podcast_ai.core.error_codes import JobError
from podcast_ai.core.constants import (
    ErrorCode, DEFAULT_CHROMA_HOST, DEFAULT_CHROMA_PORT, DEFAULT_CHROMA_AUTH_PROVIDER,
    SUMMARY_COLLECTION, QA_COLLECTION,
)

logger = logging.getLogger(__name__)

_AUTH_PROVIDERS = {
    'basic': "chromadb.auth.basic_authn.BasicAuthClientProvider",
    'token': "chromadb.auth.token_authn.TokenAuthClientProvider",
}

_COLLECTION_DESCRIPTIONS = {
    SUMMARY_COLLECTION: "Podcast episode transcripts for semantic search and Q&A",
    QA_COLLECTION: "Consolidated podcast transcript embeddings",
}


class ChromaVectorStore:
    """Lazily connects; one cached collection handle per name."""

    def __init__(self, host: str = DEFAULT_CHROMA_HOST, port: int = DEFAULT_CHROMA_PORT,
                 auth_provider: str | None = DEFAULT_CHROMA_AUTH_PROVIDER,
                 auth_credentials: str | None = None):
        self.host = host
        self.port = port
        self.auth_provider = auth_provider
        self.auth_credentials = auth_credentials
        self._client = None
        self._collections: dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "ChromaVectorStore":
        return cls(
            host=config.get('chroma_host', DEFAULT_CHROMA_HOST),
            port=config.get('chroma_port', DEFAULT_CHROMA_PORT),
            auth_provider=config.get('chroma_auth_provider', DEFAULT_CHROMA_AUTH_PROVIDER),
            auth_credentials=config.get('chroma_auth_credentials'),
        )

    def _settings(self) -> Settings:
        if self.auth_credentials and self.auth_provider in _AUTH_PROVIDERS:
            return Settings(
                chroma_client_auth_provider=_AUTH_PROVIDERS[self.auth_provider],
                chroma_client_auth_credentials=self.auth_credentials,
                anonymized_telemetry=False,
            )
        return Settings(anonymized_telemetry=False)

    @property
    def client(self):
        with self._lock:
            if self._client is None:
                self._client = chromadb.HttpClient(
                    host=self.host, port=int(self.port), settings=self._settings(),
                )
            return self._client

    def _collection(self, name: str):
        if name not in self._collections:
            try:
                self._collections[name] = self.client.get_or_create_collection(
                    name=name,
                    metadata={'description': _COLLECTION_DESCRIPTIONS.get(name, name)},
                )
                logger.info("Chroma collection %s initialized", name)
            except Exception as e:
                logger.error("Chroma collection %s initialization failed: %s", name, e)
                raise JobError(ErrorCode.VECTOR_STORE, f"Chroma initialization failed: {e}")
        return self._collections[name]

    # ── Contract ──────────────────────────────────────────────────────

    def heartbeat(self) -> bool:
        try:
            self.client.heartbeat()
            return True
        except Exception as e:
            logger.error("Chroma connection check failed: %s", e)
            return False

    def upsert(self, collection_name: str, items: list[dict]):
        """items: [{id, text, metadata}]"""
        if not items:
            return
        collection = self._collection(collection_name)
        try:
            collection.upsert(
                ids=[i['id'] for i in items],
                documents=[i['text'] for i in items],
                metadatas=[i.get('metadata') or {} for i in items],
            )
        except Exception as e:
            logger.error("Failed to upsert %d items into %s: %s", len(items), collection_name, e)
            raise JobError(ErrorCode.VECTOR_STORE, f"Vector upsert failed: {e}")

    def query(self, collection_name: str, query_text: str,
              where: dict | None = None, top_k: int = 3) -> list[dict]:
        """Ranked [{content, metadata, distance}], most relevant first."""
        collection = self._collection(collection_name)
        try:
            results = collection.query(
                query_texts=[query_text],
                n_results=top_k,
                where=where or None,
                include=["metadatas", "documents", "distances"],
            )
        except Exception as e:
            logger.error("Failed to query %s: %s", collection_name, e)
            raise JobError(ErrorCode.VECTOR_STORE, f"Vector query failed: {e}")

        documents = (results.get('documents') or [[]])[0] or []
        metadatas = (results.get('metadatas') or [[]])[0] or []
        distances = (results.get('distances') or [[]])[0] or []

        ranked = [
            {
                'content': doc,
                'metadata': metadatas[i] if i < len(metadatas) else {},
                'distance': distances[i] if i < len(distances) else 0.0,
            }
            for i, doc in enumerate(documents)
        ]
        ranked.sort(key=lambda r: r['distance'])
        return ranked

    def delete_where(self, collection_name: str, where: dict):
        collection = self._collection(collection_name)
        try:
            collection.delete(where=where)
        except Exception as e:
            logger.error("Failed to delete from %s where %s: %s", collection_name, where, e)
            raise JobError(ErrorCode.VECTOR_STORE, f"Vector delete failed: {e}")

    def delete_ids(self, collection_name: str, ids: list[str]):
        if not ids:
            return
        collection = self._collection(collection_name)
        try:
            collection.delete(ids=ids)
        except Exception as e:
            logger.error("Failed to delete %d ids from %s: %s", len(ids), collection_name, e)
            raise JobError(ErrorCode.VECTOR_STORE, f"Vector delete failed: {e}")
