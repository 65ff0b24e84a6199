"""
Filtering and sorting tests for PostQuery
"""
import asyncio

import pytest

from community import keys
from community.errors import StoreUnavailable
from community.models import PostFilters
from community.query import PostQuery, sort_posts
from community.repository import PostRepository
from community.store import MemoryStore


async def make_post(repo, caller, title, content="body", category="discussion", tags=()):
    return await repo.create_post(caller, title, content, category, list(tags))


class PooledStore(MemoryStore):
    """Fails like an exhausted connection pool when too many reads overlap"""

    def __init__(self, max_connections):
        super().__init__()
        self.max_connections = max_connections
        self.in_flight = 0
        self.peak = 0

    async def _command(self, result):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.in_flight > self.max_connections:
                raise StoreUnavailable("Too many connections")
            await asyncio.sleep(0)
            return result
        finally:
            self.in_flight -= 1

    async def hgetall(self, key):
        return await self._command(await super().hgetall(key))

    async def scard(self, key):
        return await self._command(await super().scard(key))

    async def llen(self, key):
        return await self._command(await super().llen(key))

    async def sismember(self, key, member):
        return await self._command(await super().sismember(key, member))


class TestFilters:

    async def test_no_filters_returns_everything_newest_first(self, repo, alice):
        first = await make_post(repo, alice, "first")
        second = await make_post(repo, alice, "second")
        await repo.store.hset(keys.post(first["id"]), {"createdAt": "2026-01-01T00:00:00.000Z"})
        await repo.store.hset(keys.post(second["id"]), {"createdAt": "2026-02-01T00:00:00.000Z"})

        posts = await repo.list_posts()
        assert [post["title"] for post in posts] == ["second", "first"]

    async def test_category_and_tag_are_conjunctive(self, repo, alice):
        """Only idea posts that carry the ai tag"""
        match = await make_post(repo, alice, "match", category="idea", tags=["ai", "ml"])
        await make_post(repo, alice, "wrong tag", category="idea", tags=["web3"])
        await make_post(repo, alice, "wrong category", category="question", tags=["ai"])

        posts = await repo.list_posts(PostFilters(category="idea", tags=["ai"]))
        assert [post["id"] for post in posts] == [match["id"]]

    async def test_tags_match_any(self, repo, alice):
        await make_post(repo, alice, "a", tags=["react"])
        await make_post(repo, alice, "b", tags=["vite"])
        await make_post(repo, alice, "c", tags=["rust"])

        posts = await repo.list_posts(PostFilters(tags=["react", "vite"]))
        assert sorted(post["title"] for post in posts) == ["a", "b"]

    async def test_search_is_case_insensitive_on_title_and_content(self, repo, alice):
        await make_post(repo, alice, "Deploying with Vite", content="notes")
        await make_post(repo, alice, "Other", content="we DEPLOY on fridays")
        await make_post(repo, alice, "Unrelated", content="nothing here")

        posts = await repo.list_posts(PostFilters(search="deploy"))
        assert sorted(post["title"] for post in posts) == ["Deploying with Vite", "Other"]

    async def test_author_filter(self, repo, alice, bob):
        await make_post(repo, alice, "mine")
        await make_post(repo, bob, "theirs")

        posts = await repo.list_posts(PostFilters(author_id=bob.user_id))
        assert [post["title"] for post in posts] == ["theirs"]

    async def test_bookmarked_without_identity_is_empty(self, repo, alice):
        post = await make_post(repo, alice, "saved")
        await repo.set_bookmark(alice, post["id"], True)

        assert await repo.list_posts(PostFilters(bookmarked=True)) == []

    async def test_caller_flags(self, repo, alice, bob):
        liked = await make_post(repo, alice, "liked")
        await make_post(repo, alice, "plain")
        await repo.set_like(bob, liked["id"], True)
        await repo.set_bookmark(bob, liked["id"], True)

        posts = {post["title"]: post for post in await repo.list_posts(PostFilters(user_id=bob.user_id))}
        assert posts["liked"]["isLiked"] is True
        assert posts["liked"]["isBookmarked"] is True
        assert posts["plain"]["isLiked"] is False
        assert posts["plain"]["isBookmarked"] is False

    async def test_stale_index_entry_is_rechecked(self, repo, alice):
        """A post left in an old category set after a partial update is not listed there"""
        post = await make_post(repo, alice, "moved", category="idea")
        await repo.store.hset(keys.post(post["id"]), {"category": "tutorial"})

        assert await repo.list_posts(PostFilters(category="idea")) == []

    async def test_missing_record_is_skipped(self, repo, alice):
        post = await make_post(repo, alice, "kept")
        await repo.store.lpush(keys.POSTS, "ghost")

        posts = await repo.list_posts()
        assert [p["id"] for p in posts] == [post["id"]]


class TestSorting:

    async def test_sort_by_likes(self, repo, alice, bob):
        popular = await make_post(repo, alice, "popular")
        quiet = await make_post(repo, alice, "quiet")
        await repo.set_like(alice, popular["id"], True)
        await repo.set_like(bob, popular["id"], True)
        await repo.set_like(bob, quiet["id"], True)

        desc = await repo.list_posts(PostFilters(sort_by="likes"))
        asc = await repo.list_posts(PostFilters(sort_by="likes", sort_order="asc"))
        assert [post["title"] for post in desc] == ["popular", "quiet"]
        assert [post["title"] for post in asc] == ["quiet", "popular"]

    async def test_sort_by_comments(self, repo, alice, bob):
        busy = await make_post(repo, alice, "busy")
        await make_post(repo, alice, "silent")
        await repo.add_comment(bob, busy["id"], "first!")

        posts = await repo.list_posts(PostFilters(sort_by="comments"))
        assert [post["title"] for post in posts] == ["busy", "silent"]
        assert posts[0]["comments"] == 1

    def test_unparseable_dates_sort_oldest(self):
        posts = [
            {"id": "a", "createdAt": "garbage"},
            {"id": "b", "createdAt": "2026-03-01T10:00:00.000Z"},
            {"id": "c", "createdAt": "2025-03-01T10:00:00.000Z"},
        ]
        assert [post["id"] for post in sort_posts(posts)] == ["b", "c", "a"]
        assert [post["id"] for post in sort_posts(posts, sort_order="asc")] == ["a", "c", "b"]


class TestLoad:

    async def test_load_one_counts(self, repo, alice, bob):
        post = await make_post(repo, alice, "counted")
        await repo.set_like(bob, post["id"], True)
        await repo.add_comment(bob, post["id"], "nice")

        loaded = await PostQuery(repo.store).load_one(post["id"], bob.user_id)
        assert loaded["likes"] == 1
        assert loaded["comments"] == 1
        assert loaded["isLiked"] is True
        assert loaded["isBookmarked"] is False

    async def test_load_one_missing(self, store):
        assert await PostQuery(store).load_one("nope") is None

    async def test_listing_more_posts_than_connections(self, alice, bob):
        store = PooledStore(max_connections=25)
        repo = PostRepository(store, load_concurrency=10)
        for i in range(150):
            await make_post(repo, alice, f"post {i}")

        posts = await repo.list_posts(PostFilters(user_id=bob.user_id))

        assert len(posts) == 150
        assert 1 < store.peak <= 25

    async def test_unbounded_listing_exhausts_connections(self, alice):
        store = PooledStore(max_connections=25)
        repo = PostRepository(store, load_concurrency=150)
        for i in range(150):
            await make_post(repo, alice, f"post {i}")

        with pytest.raises(StoreUnavailable):
            await repo.list_posts()

    async def test_comments_load_within_limit(self, alice, bob):
        store = PooledStore(max_connections=5)
        repo = PostRepository(store, load_concurrency=5)
        post = await make_post(repo, alice, "busy")
        for i in range(40):
            await repo.add_comment(bob, post["id"], f"comment {i}")
        store.peak = 0

        comments = await repo.list_comments(post["id"])

        assert [c["content"] for c in comments] == [f"comment {i}" for i in range(40)]
        assert store.peak <= 5
