"""Read-side post queries.

Candidates come from the narrowest applicable index, records are fetched
concurrently, and every filter is checked again against the loaded record
before sorting in memory. Nothing here writes to the store.
"""
import asyncio
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Set

from . import keys
from .models import PostFilters, parse_instant, shape_post
from .store import Store


# Posts loaded at once; each load holds up to two store connections
DEFAULT_LOAD_CONCURRENCY = 20


async def bounded_gather(limit: int, aws: Iterable[Awaitable]) -> List[Any]:
    """Like asyncio.gather, with at most limit awaitables running at a time"""
    semaphore = asyncio.Semaphore(limit)

    async def run(aw):
        async with semaphore:
            return await aw

    return await asyncio.gather(*(run(aw) for aw in aws))


class PostQuery:
    def __init__(self, store: Store, load_concurrency: int = DEFAULT_LOAD_CONCURRENCY):
        self.store = store
        self.load_concurrency = load_concurrency

    async def run(self, filters: PostFilters) -> List[Dict[str, Any]]:
        if filters.bookmarked and not filters.user_id:
            return []

        bookmarks = set()
        if filters.user_id:
            bookmarks = await self.store.smembers(keys.user_bookmarks(filters.user_id))

        post_ids = await self.candidate_ids(filters, bookmarks)
        posts = await self.load(post_ids, filters.user_id, bookmarks)
        posts = [post for post in posts if matches(post, filters, bookmarks)]
        return sort_posts(posts, filters.sort_by, filters.sort_order)

    async def candidate_ids(self, filters: PostFilters, bookmarks: Set[str]) -> List[str]:
        """Ids worth loading, from the indices that apply or else the global list"""
        sources = []
        if filters.bookmarked:
            sources.append(set(bookmarks))
        if filters.category:
            sources.append(await self.store.smembers(keys.category(filters.category)))
        if filters.tags:
            tagged = await asyncio.gather(*(self.store.smembers(keys.tag(tag)) for tag in filters.tags))
            sources.append(set().union(*tagged))
        if filters.author_id:
            sources.append(set(await self.store.lrange(keys.user_posts(filters.author_id))))

        if not sources:
            return await self.store.lrange(keys.POSTS)
        return sorted(set.intersection(*sources))

    async def load(
        self,
        post_ids: List[str],
        user_id: Optional[str] = None,
        bookmarks: Optional[Set[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Fetch posts with derived counts concurrently, skipping deleted ones"""
        loaded = await bounded_gather(
            self.load_concurrency,
            (self.load_one(post_id, user_id, bookmarks) for post_id in post_ids),
        )
        return [post for post in loaded if post is not None]

    async def load_one(
        self,
        post_id: str,
        user_id: Optional[str] = None,
        bookmarks: Optional[Set[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        record = await self.store.hgetall(keys.post(post_id))
        if not record or not record.get("id"):
            return None

        likes_key = keys.post_likes(post_id)
        likes, comments = await asyncio.gather(
            self.store.scard(likes_key),
            self.store.llen(keys.post_comments(post_id)),
        )
        is_liked = is_bookmarked = False
        if user_id:
            is_liked = await self.store.sismember(likes_key, user_id)
            if bookmarks is None:
                is_bookmarked = await self.store.sismember(keys.user_bookmarks(user_id), post_id)
            else:
                is_bookmarked = post_id in bookmarks
        return shape_post(record, likes or 0, comments or 0, is_liked, is_bookmarked)


def matches(post: Dict[str, Any], filters: PostFilters, bookmarks: Set[str]) -> bool:
    if filters.search:
        needle = filters.search.lower()
        if needle not in post.get("title", "").lower() and needle not in post.get("content", "").lower():
            return False
    if filters.category and post.get("category") != filters.category:
        return False
    if filters.tags and not any(tag in filters.tags for tag in post["tags"]):
        return False
    if filters.bookmarked and post["id"] not in bookmarks:
        return False
    if filters.author_id and post.get("authorId") != filters.author_id:
        return False
    return True


def sort_posts(posts: List[Dict[str, Any]], sort_by: str = "createdAt", sort_order: str = "desc") -> List[Dict[str, Any]]:
    if sort_by in ("likes", "comments"):
        key = lambda post: post[sort_by]
    else:
        key = lambda post: parse_instant(post.get(sort_by))
    return sorted(posts, key=key, reverse=sort_order == "desc")
