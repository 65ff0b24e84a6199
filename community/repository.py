"""Post and comment operations for the community board.

Validation and authorization run before any store mutation. Index upkeep is
delegated to `IndexMaintainer`; listing goes through `PostQuery`.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

from . import keys
from .errors import Forbidden, NotFound, ValidationFailed
from .indexer import IndexMaintainer, encode_tags
from .models import (
    CATEGORIES,
    Caller,
    PostFilters,
    clean_tags,
    decode_tags,
    normalize_category,
    now_iso,
    shape_comment,
    shape_post,
)
from .query import DEFAULT_LOAD_CONCURRENCY, PostQuery, bounded_gather
from .store import Store

logger = logging.getLogger(__name__)


class PostRepository:
    def __init__(self, store: Store, load_concurrency: int = DEFAULT_LOAD_CONCURRENCY):
        self.store = store
        self.indexer = IndexMaintainer(store)
        self.query = PostQuery(store, load_concurrency)

    async def _require_post(self, post_id: str) -> Dict[str, str]:
        record = await self.store.hgetall(keys.post(post_id))
        if not record or not record.get("id"):
            raise NotFound("Post not found")
        return record

    @staticmethod
    def _authorize(caller: Caller, record: Dict[str, str], action: str) -> None:
        if record.get("authorId") != caller.user_id and not caller.is_elevated:
            raise Forbidden(f"You do not have permission to {action} this post")

    async def _counts(self, post_id: str):
        return await asyncio.gather(
            self.store.scard(keys.post_likes(post_id)),
            self.store.llen(keys.post_comments(post_id)),
        )

    ##########
    # Reads
    ##########
    async def list_posts(self, filters: Optional[PostFilters] = None) -> List[Dict[str, Any]]:
        return await self.query.run(filters or PostFilters())

    async def get_post(self, post_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        post = await self.query.load_one(post_id, user_id)
        if post is None:
            raise NotFound("Post not found")
        return post

    async def list_comments(self, post_id: str) -> List[Dict[str, Any]]:
        """Comments of a post in the order they were written"""
        await self._require_post(post_id)
        comment_ids = await self.store.lrange(keys.post_comments(post_id))
        comments = await bounded_gather(
            self.query.load_concurrency,
            (self._load_comment(comment_id) for comment_id in comment_ids),
        )
        return [comment for comment in comments if comment is not None]

    async def _load_comment(self, comment_id: str) -> Optional[Dict[str, Any]]:
        record = await self.store.hgetall(keys.comment(comment_id))
        if not record or not record.get("id"):
            return None
        likes = await self.store.scard(keys.comment_likes(comment_id))
        return shape_comment(record, likes or 0)

    ##########
    # Writes
    ##########
    async def create_post(
        self,
        caller: Caller,
        title: str,
        content: str,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        title = (title or "").strip()
        if not title or not (content or "").strip():
            raise ValidationFailed("Title and content are required")

        tag_list = clean_tags(tags)
        now = now_iso()
        record = {
            "id": str(uuid.uuid4()),
            "title": title,
            "content": content,
            "category": normalize_category(category),
            "tags": encode_tags(tag_list),
            "authorId": caller.user_id,
            "authorName": caller.name,
            "createdAt": now,
            "updatedAt": now,
        }
        await self.indexer.post_created(record, tag_list)
        logger.info("Post %s created by %s in %s", record["id"], caller.user_id, record["category"])
        return shape_post(record)

    async def update_post(
        self,
        caller: Caller,
        post_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Apply the supplied fields

        A blank title or content counts as not supplied. A category outside
        the enumeration is ignored and the post keeps its current one.
        """
        record = await self._require_post(post_id)
        self._authorize(caller, record, "update")

        changes = {"updatedAt": now_iso()}
        if title and title.strip():
            changes["title"] = title.strip()
        if content and content.strip():
            changes["content"] = content
        if category in CATEGORIES:
            changes["category"] = category

        old_tags = decode_tags(record)
        new_tags = None
        if tags is not None:
            new_tags = clean_tags(tags)
            changes["tags"] = encode_tags(new_tags)

        await self.indexer.post_updated(record, changes, old_tags, new_tags)
        logger.info("Post %s updated by %s", post_id, caller.user_id)

        likes, comments = await self._counts(post_id)
        return shape_post({**record, **changes}, likes or 0, comments or 0)

    async def delete_post(self, caller: Caller, post_id: str) -> None:
        record = await self._require_post(post_id)
        self._authorize(caller, record, "delete")

        swept = await self.indexer.post_deleted(record, decode_tags(record))
        logger.info("Post %s deleted by %s (removed from %d bookmark sets)", post_id, caller.user_id, swept)

    async def add_comment(self, caller: Caller, post_id: str, content: str) -> Dict[str, Any]:
        await self._require_post(post_id)
        if not (content or "").strip():
            raise ValidationFailed("Comment content is required")

        record = {
            "id": str(uuid.uuid4()),
            "postId": post_id,
            "content": content,
            "authorId": caller.user_id,
            "authorName": caller.name,
            "createdAt": now_iso(),
        }
        await self.indexer.comment_created(record)
        logger.info("Comment %s added to %s by %s", record["id"], post_id, caller.user_id)
        return shape_comment(record)

    ##########
    # Likes and bookmarks
    ##########
    async def set_like(self, caller: Caller, post_id: str, liked: bool) -> Dict[str, Any]:
        await self._require_post(post_id)
        likes_key = keys.post_likes(post_id)
        if liked:
            await self.store.sadd(likes_key, caller.user_id)
        else:
            await self.store.srem(likes_key, caller.user_id)
        likes = await self.store.scard(likes_key)
        return {"likes": likes or 0, "isLiked": liked}

    async def set_bookmark(self, caller: Caller, post_id: str, bookmarked: bool) -> Dict[str, Any]:
        await self._require_post(post_id)
        bookmarks_key = keys.user_bookmarks(caller.user_id)
        if bookmarked:
            await self.store.sadd(bookmarks_key, post_id)
        else:
            await self.store.srem(bookmarks_key, post_id)
        return {"isBookmarked": bookmarked}
