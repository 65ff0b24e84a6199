"""Community board core: posts, comments, likes and bookmarks over a key-value store."""
from .errors import (
    CommunityError,
    Forbidden,
    NotFound,
    StoreUnavailable,
    Unauthenticated,
    ValidationFailed,
)
from .repository import PostRepository
from .store import MemoryStore, RedisStore, Store
