"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from postboard.config import get_settings
from postboard.db import DbClient, InMemoryDbClient, PostgresDbClient
from postboard.identity import IdentityProvider, LocalIdentityProvider
from postboard.queue import EventQueue, InMemoryEventQueue, RedisEventQueue
from postboard.search import InMemorySearchIndex, SearchIndex, SqliteSearchIndex
from postboard.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_queue_client: EventQueue | None = None
_search_index: SearchIndex | None = None
_identity_provider: IdentityProvider | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.s3_bucket:
        _storage_client = InMemoryStorageClient(
            base_url=settings.storage_public_base_url
        )
    else:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_queue_client() -> EventQueue:
    """
    Return a singleton queue client for dispatching events to workers.
    """
    global _queue_client
    if _queue_client:
        return _queue_client

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _queue_client = RedisEventQueue(
            url=settings.redis_url,
            queue_key=settings.redis_queue_key,
        )
    else:
        _queue_client = InMemoryEventQueue()
    return _queue_client


def get_search_index() -> SearchIndex:
    global _search_index
    if _search_index:
        return _search_index

    settings = get_settings()
    if settings.search_db_path and not settings.use_in_memory_backends:
        _search_index = SqliteSearchIndex(settings.search_db_path)
    else:
        _search_index = InMemorySearchIndex()
    return _search_index


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    _identity_provider = LocalIdentityProvider(
        get_db_client(),
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expire_minutes=settings.access_token_expire_minutes,
    )
    return _identity_provider
