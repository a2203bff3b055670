"""Credential persistence: the token store and its key-value backends."""

from qbolink.storage.base import KeyValueStore
from qbolink.storage.file import FileKeyValueStore
from qbolink.storage.memory import MemoryKeyValueStore
from qbolink.storage.token_store import TOKEN_KEY_PREFIX, TokenStore, token_key

__all__ = [
    "TOKEN_KEY_PREFIX",
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "TokenStore",
    "token_key",
]
