"""Hosted store access: PostgREST client and realtime change feed."""

from .client import RemoteConfig, RemoteMirrorClient
from .filters import ALL, Predicate, eq, neq
from .realtime import ChangeEvent, EventType, RealtimeChangeFeed
