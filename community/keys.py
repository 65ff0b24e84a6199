"""Key names in the backing store.

The `user:*` keys are shared with the host note-taking app, which owns the
profile records.
"""

POSTS = "community:posts"
BOOKMARKS_PATTERN = "user:*:bookmarks"


def post(post_id: str) -> str:
    return f"community:post:{post_id}"


def post_likes(post_id: str) -> str:
    return f"community:post:{post_id}:likes"


def post_comments(post_id: str) -> str:
    return f"community:post:{post_id}:comments"


def comment(comment_id: str) -> str:
    return f"community:comment:{comment_id}"


def comment_likes(comment_id: str) -> str:
    return f"community:comment:{comment_id}:likes"


def category(name: str) -> str:
    return f"community:category:{name}"


def tag(name: str) -> str:
    return f"community:tag:{name}"


def user(user_id: str) -> str:
    return f"user:{user_id}"


def user_posts(user_id: str) -> str:
    return f"user:{user_id}:posts"


def user_comments(user_id: str) -> str:
    return f"user:{user_id}:comments"


def user_bookmarks(user_id: str) -> str:
    return f"user:{user_id}:bookmarks"
