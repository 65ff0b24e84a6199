"""Index maintenance for posts and comments.

Every post or comment mutation goes through `IndexMaintainer`, which turns
it into a sequence of independent store operations. Records are written
before their indices, and on deletion indices are dropped before the
record, so a half-finished delete can be retried. A failure partway through
leaves the indices partially updated; that is logged and the error is
re-raised, nothing is rolled back.
"""
import json
import logging
from functools import partial
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from . import keys
from .errors import StoreUnavailable
from .store import Store

logger = logging.getLogger(__name__)

Step = Tuple[str, Callable[[], Awaitable]]


class IndexMaintainer:
    def __init__(self, store: Store):
        self.store = store

    async def _apply(self, mutation: str, subject: str, steps: List[Step]) -> None:
        for done, (label, operation) in enumerate(steps):
            try:
                await operation()
            except StoreUnavailable:
                logger.error(
                    "%s of %s failed at step %r after %d of %d steps; indices are partially updated",
                    mutation, subject, label, done, len(steps),
                )
                raise

    ##########
    # Posts
    ##########
    async def post_created(self, record: Dict[str, str], tags: Iterable[str]) -> None:
        """Store a new post and make it discoverable through every index"""
        post_id = record["id"]
        s = self.store
        steps = [
            ("record", partial(s.hset, keys.post(post_id), record)),
            ("global list", partial(s.lpush, keys.POSTS, post_id)),
            ("author list", partial(s.lpush, keys.user_posts(record["authorId"]), post_id)),
            ("category", partial(s.sadd, keys.category(record["category"]), post_id)),
        ]
        steps += [(f"tag {tag}", partial(s.sadd, keys.tag(tag), post_id)) for tag in unique(tags)]
        await self._apply("create", post_id, steps)

    async def post_updated(
        self,
        old: Dict[str, str],
        changes: Dict[str, str],
        old_tags: List[str],
        new_tags: Optional[List[str]] = None,
    ) -> None:
        """Write changed fields, then move the post between category and tag indices

        Pass `new_tags` only when the tags were part of the update.
        """
        post_id = old["id"]
        s = self.store
        steps = [("record", partial(s.hset, keys.post(post_id), changes))]

        new_category = changes.get("category")
        if new_category and new_category != old.get("category"):
            steps.append(("old category", partial(s.srem, keys.category(old.get("category", "")), post_id)))
            steps.append(("new category", partial(s.sadd, keys.category(new_category), post_id)))

        if new_tags is not None:
            before, after = set(old_tags), set(new_tags)
            steps += [(f"drop tag {tag}", partial(s.srem, keys.tag(tag), post_id)) for tag in sorted(before - after)]
            steps += [(f"add tag {tag}", partial(s.sadd, keys.tag(tag), post_id)) for tag in sorted(after - before)]

        await self._apply("update", post_id, steps)

    async def post_deleted(self, record: Dict[str, str], tags: Iterable[str]) -> int:
        """Remove a post from every index, then remove the record itself

        Bookmarks have no reverse index, so every user's bookmark set is
        visited. Returns the number of bookmark sets that held the post.
        """
        post_id = record["id"]
        s = self.store
        steps = [
            ("global list", partial(s.lrem, keys.POSTS, post_id)),
            ("author list", partial(s.lrem, keys.user_posts(record.get("authorId", "")), post_id)),
            ("category", partial(s.srem, keys.category(record.get("category", "")), post_id)),
        ]
        steps += [(f"tag {tag}", partial(s.srem, keys.tag(tag), post_id)) for tag in unique(tags)]
        steps.append(("likes", partial(s.delete, keys.post_likes(post_id))))
        steps.append(("comments", partial(s.delete, keys.post_comments(post_id))))
        await self._apply("delete", post_id, steps)

        removed = await self._sweep_bookmarks(post_id)

        await self._apply("delete", post_id, [("record", partial(s.delete, keys.post(post_id)))])
        return removed

    async def _sweep_bookmarks(self, post_id: str) -> int:
        try:
            bookmark_keys = await self.store.scan_keys(keys.BOOKMARKS_PATTERN)
        except StoreUnavailable:
            logger.error("delete of %s failed while enumerating bookmark sets; indices are partially updated", post_id)
            raise
        logger.debug("Sweeping %d bookmark sets for %s", len(bookmark_keys), post_id)

        removed = 0
        for key in bookmark_keys:
            try:
                removed += await self.store.srem(key, post_id)
            except StoreUnavailable:
                logger.error("delete of %s failed while sweeping %s; indices are partially updated", post_id, key)
                raise
        return removed

    ##########
    # Comments
    ##########
    async def comment_created(self, record: Dict[str, str]) -> None:
        comment_id = record["id"]
        s = self.store
        await self._apply("comment", comment_id, [
            ("record", partial(s.hset, keys.comment(comment_id), record)),
            ("post comments", partial(s.rpush, keys.post_comments(record["postId"]), comment_id)),
            ("author comments", partial(s.lpush, keys.user_comments(record["authorId"]), comment_id)),
        ])


def unique(tags: Iterable[str]) -> List[str]:
    """Distinct tags in first-seen order"""
    seen = []
    for tag in tags:
        if tag not in seen:
            seen.append(tag)
    return seen


def encode_tags(tags: List[str]) -> str:
    return json.dumps(tags)
