"""Off-chain metadata stores."""

from surveyx.store.base import MetadataStore
from surveyx.store.memory import InMemoryMetadataStore
from surveyx.store.sqlite import SqliteMetadataStore

__all__ = ["InMemoryMetadataStore", "MetadataStore", "SqliteMetadataStore"]
