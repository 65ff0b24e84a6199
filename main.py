##########
# Imports
##########
from fastapi import FastAPI, Depends, Request, Query, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
from contextlib import asynccontextmanager
import jwt
import logging
import os
from dotenv import load_dotenv

from community.errors import CommunityError, Unauthenticated
from community.models import (
    BookmarkAction,
    Caller,
    CommentCreate,
    LikeAction,
    PostCreate,
    PostFilters,
    PostUpdate,
    SortKey,
    SortOrder,
    split_tags,
)
from community.profiles import ProfileDirectory
from community.repository import PostRepository
from community.store import MemoryStore, RedisStore, Store


#################
# Configuration
#################
load_dotenv()
SECRET_KEY = os.getenv("JWT_SECRET") or os.getenv("SECRET_KEY", "your-secret-key-change-this")
ALGORITHM = "HS256"

# 'cookie' also accepts the auth cookie, 'bearer' only the Authorization header
AUTH_MODE = os.getenv("AUTH_MODE", "cookie")
AUTH_COOKIE = "auth_token"

# Store config
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))
REDIS_POOL_TIMEOUT = float(os.getenv("REDIS_POOL_TIMEOUT", "10"))
# Posts fetched at once while listing; keep 2 x this within REDIS_MAX_CONNECTIONS
LOAD_CONCURRENCY = int(os.getenv("LOAD_CONCURRENCY", "20"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


######################
# Store Connection
######################
def build_store() -> Store:
    if STORE_BACKEND == "memory":
        logger.warning("Using the in-memory store; community data is lost on restart")
        return MemoryStore()
    return RedisStore.from_url(
        REDIS_URL,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        max_connections=REDIS_MAX_CONNECTIONS,
        pool_timeout=REDIS_POOL_TIMEOUT,
    )

store = build_store()
repository = PostRepository(store, load_concurrency=LOAD_CONCURRENCY)
profiles = ProfileDirectory(store)

def get_repository() -> PostRepository:
    return repository

def get_profiles() -> ProfileDirectory:
    return profiles


#####################
# FastAPI App Setup
#####################
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Community API starting with %s store", STORE_BACKEND)
    yield
    await store.close()

app = FastAPI(
    title="Community Board",
    description="Posts, comments, likes and bookmarks for the notes app",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


##########
# Security
##########
# HTTP Bearer token dependency
security = HTTPBearer(auto_error=False)

def verify_token(token: str):
    """Verify JWT token, return payload or None if invalid"""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.PyJWTError as exc:
        logger.debug("JWT verification failed: %s", exc)
        return None

def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]):
    """Pick the credential according to AUTH_MODE"""
    if credentials:
        token = credentials.credentials
    elif AUTH_MODE != "bearer":
        token = request.cookies.get(AUTH_COOKIE)
    else:
        token = None

    if not token or not token.strip() or token in ("null", "undefined"):
        return None
    return token

async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Return the caller's user id if the token is valid, else None"""
    token = extract_token(request, credentials)
    if not token:
        return None

    payload = verify_token(token)
    if not payload:
        return None
    return payload.get("sub") or payload.get("userId") or payload.get("user_id")

async def get_current_user_required(
    user_id: Optional[str] = Depends(get_current_user_id),
    directory: ProfileDirectory = Depends(get_profiles),
) -> Caller:
    """Return the caller with name and role, or raise 401 if not authenticated"""
    if not user_id:
        raise Unauthenticated("Authentication required")
    return await directory.lookup(user_id)


##################
# Error Responses
##################
def error_response(status_code: int, message: str):
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})

@app.exception_handler(CommunityError)
async def community_error_handler(request: Request, exc: CommunityError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc.status_code, "Internal server error")
    return error_response(exc.status_code, exc.message)

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return error_response(status.HTTP_400_BAD_REQUEST, f"Invalid request: {details}")

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = "Endpoint not found" if exc.status_code == 404 else str(exc.detail)
    return error_response(exc.status_code, message)

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


##########
# Routes
##########

##################
# Posts
##################
@app.get("/api/community")
async def list_posts(
    search: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[str] = None,
    bookmarked: bool = False,
    user_id: Optional[str] = Query(None, alias="userId"),
    author: Optional[str] = None,
    sort_by: SortKey = Query("createdAt", alias="sortBy"),
    sort_order: SortOrder = Query("desc", alias="sortOrder"),
    current_user_id: Optional[str] = Depends(get_current_user_id),
    repo: PostRepository = Depends(get_repository),
):
    """List posts; the token's identity wins over the userId parameter"""
    filters = PostFilters(
        search=search,
        category=category,
        tags=split_tags(tags),
        bookmarked=bookmarked,
        user_id=current_user_id or user_id,
        author_id=author,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {"success": True, "data": await repo.list_posts(filters)}

@app.get("/api/community/{post_id}")
async def get_post(
    post_id: str,
    current_user_id: Optional[str] = Depends(get_current_user_id),
    repo: PostRepository = Depends(get_repository),
):
    return {"success": True, "data": await repo.get_post(post_id, current_user_id)}

@app.post("/api/community", status_code=status.HTTP_201_CREATED)
async def create_post(
    post: PostCreate,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    created = await repo.create_post(caller, post.title, post.content, post.category, post.tags)
    return {"success": True, "data": created}

@app.put("/api/community/{post_id}")
async def update_post(
    post_id: str,
    post: PostUpdate,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    updated = await repo.update_post(
        caller, post_id,
        title=post.title,
        content=post.content,
        category=post.category,
        tags=post.tags,
    )
    return {"success": True, "data": updated}

@app.delete("/api/community/{post_id}")
async def delete_post(
    post_id: str,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    await repo.delete_post(caller, post_id)
    return {"success": True, "message": "Post deleted successfully"}


##################
# Comments
##################
@app.get("/api/community/{post_id}/comments")
async def list_comments(post_id: str, repo: PostRepository = Depends(get_repository)):
    return {"success": True, "data": await repo.list_comments(post_id)}

@app.post("/api/community/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: str,
    comment: CommentCreate,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    return {"success": True, "data": await repo.add_comment(caller, post_id, comment.content)}


#####################
# Likes & Bookmarks
#####################
@app.post("/api/community/{post_id}/like")
async def like_post(
    post_id: str,
    body: Optional[LikeAction] = None,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    """Like or unlike a post; liking twice is the same as liking once"""
    action = body.action if body else "like"
    return {"success": True, "data": await repo.set_like(caller, post_id, action == "like")}

@app.post("/api/community/{post_id}/bookmark")
async def bookmark_post(
    post_id: str,
    body: Optional[BookmarkAction] = None,
    caller: Caller = Depends(get_current_user_required),
    repo: PostRepository = Depends(get_repository),
):
    action = body.action if body else "bookmark"
    return {"success": True, "data": await repo.set_bookmark(caller, post_id, action == "bookmark")}


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
