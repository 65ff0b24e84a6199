import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CATEGORIES = (
    "question",
    "prompt",
    "tutorial",
    "showcase",
    "idea",
    "discussion",
    "announcement",
)
DEFAULT_CATEGORY = "discussion"
ADMIN_ROLE = "admin"

SortKey = Literal["createdAt", "updatedAt", "likes", "comments"]
SortOrder = Literal["asc", "desc"]


#################
# Callers
#################
class Caller(BaseModel):
    """Authenticated caller resolved to a display name and role"""
    user_id: str
    name: str
    role: Optional[str] = None

    @property
    def is_elevated(self) -> bool:
        return self.role == ADMIN_ROLE


#################
# Request bodies
#################
class PostCreate(BaseModel):
    title: str = ""
    content: str = ""
    category: Optional[str] = None
    tags: List[str] = []

class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None

class CommentCreate(BaseModel):
    content: str = ""

class LikeAction(BaseModel):
    action: Literal["like", "unlike"] = "like"

class BookmarkAction(BaseModel):
    action: Literal["bookmark", "unbookmark"] = "bookmark"


class PostFilters(BaseModel):
    """Listing filters; every given filter must match except tags, which match on any"""
    search: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    bookmarked: bool = False
    user_id: Optional[str] = None
    author_id: Optional[str] = None
    sort_by: SortKey = "createdAt"
    sort_order: SortOrder = "desc"


######################
# Field helpers
######################
def now_iso() -> str:
    """Current UTC instant, millisecond precision, Z suffix"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_instant(value: Optional[str]) -> datetime:
    """Parse a stored timestamp; unreadable values sort as the oldest"""
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def normalize_category(category: Optional[str]) -> str:
    if category in CATEGORIES:
        return category
    return DEFAULT_CATEGORY

def clean_tags(tags: Optional[List[str]]) -> List[str]:
    """Trim tags and drop blank ones; duplicates are kept"""
    return [tag.strip() for tag in tags or [] if tag and tag.strip()]

def split_tags(raw: Optional[str]) -> List[str]:
    """Split a comma-separated tag query parameter"""
    if not raw:
        return []
    return clean_tags(raw.split(","))

def decode_tags(record: Dict[str, str]) -> List[str]:
    try:
        tags = json.loads(record.get("tags") or "[]")
    except ValueError:
        logger.warning("Unreadable tags on record %s: %r", record.get("id"), record.get("tags"))
        return []
    if not isinstance(tags, list):
        return []
    return [str(tag) for tag in tags]


######################
# Response shaping
######################
def shape_post(
    record: Dict[str, str],
    likes: int = 0,
    comments: int = 0,
    is_liked: bool = False,
    is_bookmarked: bool = False,
) -> Dict[str, Any]:
    """Turn a stored post hash into a response record with derived fields"""
    post = dict(record)
    post["tags"] = decode_tags(record)
    post["likes"] = likes
    post["comments"] = comments
    post["isLiked"] = is_liked
    post["isBookmarked"] = is_bookmarked
    return post

def shape_comment(record: Dict[str, str], likes: int = 0) -> Dict[str, Any]:
    comment = dict(record)
    comment["likes"] = likes
    return comment
