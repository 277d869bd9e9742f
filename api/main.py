"""FastAPI server exposing FlickSwiper functionality."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from flickswiper.app import FlickSwiper
from flickswiper.config import Config
from flickswiper.deeplink import parse_deep_link, share_link
from flickswiper.errors import (
    ConnectivityError,
    ConsistencyViolation,
    FlickSwiperError,
    InvalidDisplayName,
    PersistenceError,
    ProviderError,
    RemoteSyncError,
)
from flickswiper.filters import ContentTypeFilter, DiscoveryMethod, Genre, SortOption
from flickswiper.models import ClassifiedItem, Direction, FollowedList, FollowedListItem, MediaItem, UserList, poster_url
from flickswiper.smart_collections import build_collections, filter_collection

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic models for API
# =============================================================================


class MediaItemResponse(BaseModel):
    unique_id: str
    external_id: int
    media_kind: str
    title: str
    overview: str
    poster_url: str | None
    release_year: int | None
    rating: float | None
    genre_ids: list[int]


class FiltersResponse(BaseModel):
    method: str
    content_type: str
    genre: str | None
    sort: str
    year_min: int | None
    year_max: int | None


class QueueResponse(BaseModel):
    items: list[MediaItemResponse]
    length: int
    is_loading: bool
    has_reached_end: bool
    is_offline: bool
    last_error: str | None
    reload_pending: bool
    can_undo: bool
    filters: FiltersResponse


class FilterUpdateRequest(BaseModel):
    method: str | None = None
    content_type: str | None = None
    genre: str | None = None
    sort: str | None = None
    year_min: int | None = None
    year_max: int | None = None


class SwipeRequest(BaseModel):
    unique_id: str
    direction: str  # "seen", "skipped" or "watchlist"


class ClassifiedItemResponse(BaseModel):
    unique_id: str
    external_id: int
    media_kind: str
    title: str
    direction: str
    classified_at: datetime
    poster_url: str | None
    release_year: int | None
    rating: float | None
    personal_rating: int | None
    genre_ids: list[int]
    source_platform: str | None


class SwipeResponse(BaseModel):
    item: ClassifiedItemResponse
    previous_direction: str | None
    created: bool
    changed: bool


class RatingRequest(BaseModel):
    rating: int | None  # None clears the rating


class LibraryStatsResponse(BaseModel):
    seen: int
    watchlist: int
    skipped: int
    lists: int
    followed_lists: int


class CollectionResponse(BaseModel):
    id: str
    title: str
    count: int
    cover_url: str | None


class ListResponse(BaseModel):
    id: str
    name: str
    created_at: datetime
    item_count: int
    is_published: bool
    share_link: str | None
    last_synced_at: datetime | None


class CreateListRequest(BaseModel):
    name: str


class AddItemsRequest(BaseModel):
    unique_ids: list[str]


class PublishRequest(BaseModel):
    display_name: str | None = None


class PublishResponse(BaseModel):
    list_id: str
    share_link: str


class FollowRequest(BaseModel):
    link: str  # share link or bare document ID


class FollowedListResponse(BaseModel):
    remote_doc_id: str
    name: str
    owner_display_name: str
    item_count: int
    is_active: bool
    followed_at: datetime
    last_fetched_at: datetime | None


class FollowedItemResponse(BaseModel):
    unique_id: str
    media_kind: str
    title: str
    poster_path: str | None
    sort_order: int


# =============================================================================
# Application state
# =============================================================================


class AppState:
    core: FlickSwiper | None = None
    config: Config | None = None


state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup application state.

    A core already placed on `state` (e.g. by tests) is used as-is.
    """
    if state.core is None:
        state.config = Config.load()
        state.core = FlickSwiper.from_config(state.config)

    core = state.core
    await core.start()

    yield
    await core.close()
    state.core = None


# =============================================================================
# FastAPI app
# =============================================================================


app = FastAPI(
    title="FlickSwiper API",
    description="Swipe-driven movie and TV discovery",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


_ERROR_STATUS = [
    (InvalidDisplayName, 422),
    (ConsistencyViolation, 409),
    (ConnectivityError, 503),
    (ProviderError, 502),
    (RemoteSyncError, 502),
    (PersistenceError, 500),
]


@app.exception_handler(FlickSwiperError)
async def flickswiper_error_handler(request: Request, exc: FlickSwiperError):
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _core() -> FlickSwiper:
    if state.core is None:
        raise HTTPException(status_code=503, detail="Server is starting")
    return state.core


# =============================================================================
# Converters
# =============================================================================


def _media_to_response(item: MediaItem) -> MediaItemResponse:
    return MediaItemResponse(
        unique_id=item.unique_id,
        external_id=item.external_id,
        media_kind=item.media_kind.value,
        title=item.title,
        overview=item.overview,
        poster_url=item.poster_url,
        release_year=item.release_year,
        rating=item.rating,
        genre_ids=list(item.genre_ids),
    )


def _classified_to_response(item: ClassifiedItem) -> ClassifiedItemResponse:
    return ClassifiedItemResponse(
        unique_id=item.unique_id,
        external_id=item.external_id,
        media_kind=item.media_kind.value,
        title=item.title,
        direction=item.direction.value,
        classified_at=item.classified_at,
        poster_url=poster_url(item.poster_path),
        release_year=item.release_year,
        rating=item.rating,
        personal_rating=item.personal_rating,
        genre_ids=item.genre_ids,
        source_platform=item.source_platform,
    )


def _list_to_response(core: FlickSwiper, user_list: UserList) -> ListResponse:
    link = None
    if user_list.is_published and user_list.remote_doc_id:
        link = share_link(user_list.remote_doc_id)
    return ListResponse(
        id=user_list.id,
        name=user_list.name,
        created_at=user_list.created_at,
        item_count=core.lists.count(user_list.id),
        is_published=user_list.is_published,
        share_link=link,
        last_synced_at=user_list.last_synced_at,
    )


def _followed_to_response(followed: FollowedList) -> FollowedListResponse:
    return FollowedListResponse(
        remote_doc_id=followed.remote_doc_id,
        name=followed.name,
        owner_display_name=followed.owner_display_name,
        item_count=followed.item_count,
        is_active=followed.is_active,
        followed_at=followed.followed_at,
        last_fetched_at=followed.last_fetched_at,
    )


def _followed_item_to_response(item: FollowedListItem) -> FollowedItemResponse:
    return FollowedItemResponse(
        unique_id=item.unique_id,
        media_kind=item.media_kind.value,
        title=item.title,
        poster_path=item.poster_path,
        sort_order=item.sort_order,
    )


def _parse_direction(value: str) -> Direction:
    try:
        return Direction(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown direction: {value}")


def _require_list(core: FlickSwiper, list_id: str) -> UserList:
    user_list = core.lists.get_list(list_id)
    if not user_list:
        raise HTTPException(status_code=404, detail="List not found")
    return user_list


# =============================================================================
# Routes: Discovery queue
# =============================================================================


def _queue_response(core: FlickSwiper, count: int) -> QueueResponse:
    session = core.require_session()
    queue = session.queue
    filters = queue.filters
    return QueueResponse(
        items=[_media_to_response(i) for i in queue.visible(count)],
        length=len(queue),
        is_loading=queue.is_loading,
        has_reached_end=queue.has_reached_end,
        is_offline=queue.is_offline,
        last_error=str(queue.last_error) if queue.last_error else None,
        reload_pending=queue.reload_pending,
        can_undo=session.can_undo,
        filters=FiltersResponse(
            method=filters.method.value,
            content_type=filters.content_type.value,
            genre=filters.genre.display_name if filters.genre else None,
            sort=filters.sort.value,
            year_min=filters.year_min,
            year_max=filters.year_max,
        ),
    )


@app.get("/api/queue", response_model=QueueResponse)
def get_queue(count: int = Query(10, ge=1, le=100)):
    """Visible candidates plus queue status."""
    return _queue_response(_core(), count)


@app.post("/api/queue/refill", response_model=QueueResponse)
async def refill_queue():
    core = _core()
    await core.require_session().queue.refill()
    return _queue_response(core, 10)


@app.put("/api/queue/filters", response_model=QueueResponse)
async def update_filters(request: FilterUpdateRequest):
    """Change discovery filters. Only fields present in the body are applied."""
    core = _core()
    session = core.require_session()
    fields = request.model_fields_set

    try:
        if "method" in fields and request.method:
            session.set_method(DiscoveryMethod.parse(request.method))
        if "content_type" in fields and request.content_type:
            session.set_content_type(ContentTypeFilter(request.content_type))
        if "genre" in fields:
            if request.genre:
                session.set_genre(Genre[request.genre.upper().replace("-", "_")])
            else:
                session.clear_genre()
        if "sort" in fields and request.sort:
            session.set_sort(SortOption(request.sort))
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {e}")

    if "year_min" in fields or "year_max" in fields:
        year_min = request.year_min if "year_min" in fields else session.filters.year_min
        year_max = request.year_max if "year_max" in fields else session.filters.year_max
        session.set_year_range(year_min, year_max)

    return _queue_response(core, 10)


@app.post("/api/swipes", response_model=SwipeResponse)
async def swipe(request: SwipeRequest):
    """Classify a queued candidate and advance the queue."""
    core = _core()
    session = core.require_session()
    direction = _parse_direction(request.direction)

    item = next((i for i in session.queue.items if i.unique_id == request.unique_id), None)
    if not item:
        raise HTTPException(status_code=404, detail="Item not in queue")

    if direction is Direction.SEEN:
        result = await session.swipe_right(item)
    elif direction is Direction.WATCHLIST:
        result = await session.swipe_up(item)
    else:
        result = await session.swipe_left(item)

    return SwipeResponse(
        item=_classified_to_response(result.item),
        previous_direction=result.previous_direction.value if result.previous_direction else None,
        created=result.created,
        changed=result.changed,
    )


@app.post("/api/undo", response_model=MediaItemResponse)
async def undo():
    """Reverse the last swipe and put the card back on top."""
    item = _core().require_session().undo()
    if not item:
        raise HTTPException(status_code=409, detail="Nothing to undo")
    return _media_to_response(item)


@app.get("/api/rating-prompt", response_model=ClassifiedItemResponse | None)
def get_rating_prompt():
    pending = _core().require_session().pending_rating
    return _classified_to_response(pending) if pending else None


@app.post("/api/rating-prompt", response_model=ClassifiedItemResponse)
async def answer_rating_prompt(request: RatingRequest):
    session = _core().require_session()
    if request.rating is None:
        raise HTTPException(status_code=400, detail="Rating required; DELETE dismisses the prompt")
    record = session.rate_pending(request.rating)
    if not record:
        raise HTTPException(status_code=409, detail="No rating prompt is showing")
    return _classified_to_response(record)


@app.delete("/api/rating-prompt")
async def dismiss_rating_prompt():
    _core().require_session().cancel_rating_prompt()
    return {"status": "ok"}


# =============================================================================
# Routes: Library
# =============================================================================


@app.get("/api/library", response_model=list[ClassifiedItemResponse])
def get_library(
    direction: str | None = None,
    limit: int | None = Query(None, ge=1, le=1000),
):
    core = _core()
    parsed = _parse_direction(direction) if direction else None
    return [_classified_to_response(i) for i in core.library.items(parsed, limit=limit)]


@app.get("/api/library/stats", response_model=LibraryStatsResponse)
def get_library_stats():
    core = _core()
    return LibraryStatsResponse(
        seen=core.library.count(Direction.SEEN),
        watchlist=core.library.count(Direction.WATCHLIST),
        skipped=core.library.count(Direction.SKIPPED),
        lists=len(core.lists.lists()),
        followed_lists=len(core.followed.followed_lists()),
    )


@app.get("/api/library/{unique_id}", response_model=ClassifiedItemResponse)
def get_library_item(unique_id: str):
    item = _core().library.get(unique_id)
    if not item:
        raise HTTPException(status_code=404, detail="Item not in library")
    return _classified_to_response(item)


@app.delete("/api/library/{unique_id}")
async def remove_library_item(unique_id: str):
    """Remove an item from the library and every list that contains it."""
    if not _core().library.remove(unique_id):
        raise HTTPException(status_code=404, detail="Item not in library")
    return {"status": "ok"}


@app.put("/api/library/{unique_id}/rating", response_model=ClassifiedItemResponse)
async def set_rating(unique_id: str, request: RatingRequest):
    core = _core()
    if not core.library.get(unique_id):
        raise HTTPException(status_code=404, detail="Item not in library")
    if request.rating is None:
        record = core.library.clear_personal_rating(unique_id)
    else:
        record = core.library.set_personal_rating(unique_id, request.rating)
    return _classified_to_response(record)


@app.post("/api/library/reset")
async def reset_library(direction: str | None = None):
    parsed = _parse_direction(direction) if direction else None
    removed = _core().library.reset(parsed)
    return {"status": "ok", "removed": removed}


@app.get("/api/collections", response_model=list[CollectionResponse])
def get_collections():
    seen = _core().library.items(Direction.SEEN)
    return [
        CollectionResponse(
            id=c.id,
            title=c.title,
            count=c.count,
            cover_url=poster_url(c.cover_poster_path, "w342"),
        )
        for c in build_collections(seen)
    ]


@app.get("/api/collections/{collection_id}", response_model=list[ClassifiedItemResponse])
def get_collection_items(collection_id: str):
    seen = _core().library.items(Direction.SEEN)
    try:
        items = filter_collection(collection_id, seen)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return [_classified_to_response(i) for i in items]


# =============================================================================
# Routes: Lists
# =============================================================================


@app.get("/api/lists", response_model=list[ListResponse])
def get_lists():
    core = _core()
    return [_list_to_response(core, l) for l in core.lists.lists()]


@app.post("/api/lists", response_model=ListResponse)
async def create_list(request: CreateListRequest):
    core = _core()
    return _list_to_response(core, core.lists.create_list(request.name))


@app.get("/api/lists/{list_id}", response_model=ListResponse)
def get_list(list_id: str):
    core = _core()
    return _list_to_response(core, _require_list(core, list_id))


@app.patch("/api/lists/{list_id}", response_model=ListResponse)
async def rename_list(list_id: str, request: CreateListRequest):
    core = _core()
    _require_list(core, list_id)
    return _list_to_response(core, core.lists.rename_list(list_id, request.name))


@app.delete("/api/lists/{list_id}")
async def delete_list(list_id: str):
    core = _core()
    _require_list(core, list_id)
    core.lists.delete_list(list_id)
    return {"status": "ok"}


@app.get("/api/lists/{list_id}/items", response_model=list[ClassifiedItemResponse])
def get_list_items(list_id: str):
    core = _core()
    _require_list(core, list_id)
    return [_classified_to_response(i) for i in core.lists.list_items(list_id)]


@app.post("/api/lists/{list_id}/items")
async def add_list_items(list_id: str, request: AddItemsRequest):
    core = _core()
    _require_list(core, list_id)
    added = core.lists.add_many(list_id, request.unique_ids)
    return {"status": "ok", "added": added}


@app.delete("/api/lists/{list_id}/items/{unique_id}")
async def remove_list_item(list_id: str, unique_id: str):
    core = _core()
    _require_list(core, list_id)
    if not core.lists.remove_membership(list_id, unique_id):
        raise HTTPException(status_code=404, detail="Item not in list")
    return {"status": "ok"}


@app.post("/api/lists/{list_id}/publish", response_model=PublishResponse)
async def publish_list(list_id: str, request: PublishRequest):
    core = _core()
    _require_list(core, list_id)
    display_name = request.display_name or core.display_name or ""
    link = await core.publisher.publish(list_id, core.user_id, display_name)
    return PublishResponse(list_id=list_id, share_link=link)


@app.delete("/api/lists/{list_id}/publish")
async def unpublish_list(list_id: str):
    core = _core()
    _require_list(core, list_id)
    if not await core.publisher.unpublish(list_id):
        raise HTTPException(status_code=409, detail="List is not published")
    return {"status": "ok"}


# =============================================================================
# Routes: Followed lists
# =============================================================================


@app.get("/api/following", response_model=list[FollowedListResponse])
def get_followed_lists():
    return [_followed_to_response(f) for f in _core().followed.followed_lists()]


@app.post("/api/following", response_model=FollowedListResponse)
async def follow_list(request: FollowRequest):
    core = _core()
    doc_id = parse_deep_link(request.link) if request.link.startswith("http") else request.link
    if not doc_id:
        raise HTTPException(status_code=400, detail="Not a list link")
    followed = await core.followed.follow(doc_id, core.user_id)
    return _followed_to_response(followed)


@app.delete("/api/following/{doc_id}")
async def unfollow_list(doc_id: str):
    core = _core()
    if not await core.followed.unfollow(doc_id, core.user_id):
        raise HTTPException(status_code=404, detail="Not following this list")
    return {"status": "ok"}


@app.get("/api/following/{doc_id}/items", response_model=list[FollowedItemResponse])
def get_followed_items(doc_id: str):
    return [_followed_item_to_response(i) for i in _core().followed.items(doc_id)]
