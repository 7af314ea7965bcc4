"""
HTTP routes for the postboard API.
"""

from __future__ import annotations

import logging
import random
from uuid import uuid4

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Body,
    Depends,
    File,
    Query,
    UploadFile,
)

from postboard import events, worker
from postboard.auth import (
    get_current_user,
    is_empty,
    reduce_user_details,
    validate_login_data,
    validate_signup_data,
)
from postboard.config import get_settings
from postboard.db import DbClient, PostRecord, UserRecord, VoteDirection
from postboard.dependencies import (
    get_db_client,
    get_identity_provider,
    get_queue_client,
    get_search_index,
    get_storage_client,
)
from postboard.errors import Conflict, InvalidFields, NotFound, ValidationFailed
from postboard.formatters import format_posts, format_users
from postboard.identity import IdentityProvider
from postboard.queue import EventQueue
from postboard.schemas import (
    AuthedUserResponse,
    Comment,
    CommentRequest,
    FavResponse,
    FullPost,
    LoginRequest,
    MessageResponse,
    Post,
    PostCreateRequest,
    ReindexResponse,
    SearchResponse,
    SignupRequest,
    TokenResponse,
    UserDetailsRequest,
    UserDetailsResponse,
    UserListEntry,
    VoteResponse,
)
from postboard.search import DEFAULT_SEARCH_LIMIT, SearchIndex, to_search_object
from postboard.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_IMAGE_TYPES = {"image/jpeg": "jpg", "image/png": "png"}
DEFAULT_BIO = "Hey there!"


def _dispatch_events(
    background_tasks: BackgroundTasks,
    db: DbClient,
    queue: EventQueue,
    search: SearchIndex,
) -> None:
    """Apply queued side effects after the response when no worker runs."""
    if get_settings().process_events_inline:
        background_tasks.add_task(worker.drain, db=db, queue=queue, search=search)


def _full_post(db: DbClient, post: PostRecord) -> dict:
    data = post.as_dict()
    data["comments"] = [c.as_dict() for c in db.list_comments(post.post_id)]
    data["favs"] = [f.as_dict() for f in db.list_favs(post.post_id)]
    data["upvotes"] = [
        v.as_dict() for v in db.list_votes(post.post_id, VoteDirection.UP)
    ]
    data["downvotes"] = [
        v.as_dict() for v in db.list_votes(post.post_id, VoteDirection.DOWN)
    ]
    return data


def _fav_response(db: DbClient, post: PostRecord) -> FavResponse:
    return FavResponse(
        id=post.post_id,
        favCount=post.fav_count,
        favs=[f.as_dict() for f in db.list_favs(post.post_id)],
    )


def _toggle_vote(
    post_id: str, user: UserRecord, direction: VoteDirection, db: DbClient
) -> VoteResponse:
    post = db.toggle_vote(post_id, user.user_name, direction)
    logger.info(
        "%s toggled %svote on %s, score now %d",
        user.user_name,
        direction.value,
        post_id,
        post.vote_score,
    )
    return VoteResponse(
        postId=post.post_id,
        voteScore=post.vote_score,
        upvotes=[v.as_dict() for v in db.list_votes(post_id, VoteDirection.UP)],
        downvotes=[v.as_dict() for v in db.list_votes(post_id, VoteDirection.DOWN)],
    )


# Posts


@router.get("/posts", response_model=dict[str, FullPost])
def get_all_posts(db: DbClient = Depends(get_db_client)):
    return format_posts(_full_post(db, post) for post in db.list_posts())


@router.post("/post", response_model=Post, status_code=201)
def post_one_post(
    payload: PostCreateRequest,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    errors = {}
    if is_empty(payload.title):
        errors["title"] = "Must not be empty"
    if is_empty(payload.body):
        errors["body"] = "Must not be empty"
    if errors:
        raise InvalidFields(errors)

    post = db.create_post(
        title=payload.title.strip(),
        body=payload.body,
        category=(payload.category or "").strip(),
        author=user.user_name,
        author_image=user.image_url,
    )
    events.publish(queue, events.POST_CREATED, postId=post.post_id)
    _dispatch_events(background_tasks, db, queue, search)
    return Post(**post.as_dict())


@router.get("/post/{post_id}", response_model=FullPost)
def get_post(post_id: str, db: DbClient = Depends(get_db_client)):
    post = db.get_post(post_id)
    if not post:
        raise NotFound("Post not found")
    return _full_post(db, post)


@router.delete("/post/{post_id}", response_model=MessageResponse)
def delete_post(
    post_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    db.delete_post(post_id, user.user_name)
    events.publish(queue, events.POST_DELETED, postId=post_id)
    _dispatch_events(background_tasks, db, queue, search)
    return MessageResponse(message="Post deleted successfully")


# Comments


@router.post("/post/{post_id}/comment", response_model=Comment, status_code=201)
def comment_on_post(
    post_id: str,
    payload: CommentRequest,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    if is_empty(payload.body):
        raise ValidationFailed("Comment can't be empty")
    comment = db.add_comment(
        post_id, body=payload.body, user_name=user.user_name, user_image=user.image_url
    )
    events.publish(
        queue,
        events.COMMENT_CREATED,
        commentId=comment.comment_id,
        postId=post_id,
        userName=user.user_name,
    )
    _dispatch_events(background_tasks, db, queue, search)
    return Comment(**comment.as_dict())


@router.delete("/post/{post_id}/comment/{comment_id}", response_model=MessageResponse)
def delete_comment(
    post_id: str,
    comment_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    db.delete_comment(post_id, comment_id, user.user_name)
    events.publish(
        queue,
        events.COMMENT_DELETED,
        commentId=comment_id,
        postId=post_id,
        userName=user.user_name,
    )
    _dispatch_events(background_tasks, db, queue, search)
    return MessageResponse(message="Comment deleted successfully")


# Favs and votes


@router.post("/post/{post_id}/fav", response_model=FavResponse)
def fav_post(
    post_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    post, fav = db.add_fav(post_id, user.user_name)
    events.publish(
        queue,
        events.FAV_CREATED,
        favId=fav.fav_id,
        postId=post_id,
        userName=user.user_name,
    )
    _dispatch_events(background_tasks, db, queue, search)
    return _fav_response(db, post)


@router.post("/post/{post_id}/unfav", response_model=FavResponse)
def unfav_post(
    post_id: str,
    background_tasks: BackgroundTasks,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    post, fav = db.remove_fav(post_id, user.user_name)
    events.publish(
        queue,
        events.FAV_DELETED,
        favId=fav.fav_id,
        postId=post_id,
        userName=user.user_name,
    )
    _dispatch_events(background_tasks, db, queue, search)
    return _fav_response(db, post)


@router.post("/post/{post_id}/togglePostUpvote", response_model=VoteResponse)
def toggle_post_upvote(
    post_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return _toggle_vote(post_id, user, VoteDirection.UP, db)


@router.post("/post/{post_id}/togglePostDownvote", response_model=VoteResponse)
def toggle_post_downvote(
    post_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return _toggle_vote(post_id, user, VoteDirection.DOWN, db)


# Auth


@router.post("/signup", response_model=TokenResponse, status_code=201)
def signup(
    payload: SignupRequest,
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    storage: StorageClient = Depends(get_storage_client),
):
    validate_signup_data(
        email=payload.email,
        password=payload.password,
        confirm_password=payload.confirmPassword,
        user_name=payload.userName,
    )
    user_name = payload.userName.strip()
    if db.get_user(user_name):
        raise Conflict("This username is already taken", field="userName")

    user_id = identity.create_account(payload.email, payload.password)
    try:
        db.create_user(
            UserRecord(
                user_name=user_name,
                user_id=user_id,
                email=payload.email.strip().lower(),
                image_url=storage.public_url(get_settings().default_avatar),
                bio=DEFAULT_BIO,
            )
        )
    except Conflict:
        # Username taken by a concurrent signup.
        identity.delete_account(user_id)
        logger.warning("Signup for %s lost the username race", user_name)
        raise
    logger.info("Signed up %s", user_name)
    return TokenResponse(token=identity.issue_token(user_id))


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
):
    validate_login_data(email=payload.email, password=payload.password)
    user_id = identity.sign_in(payload.email, payload.password)
    return TokenResponse(token=identity.issue_token(user_id))


# Users


@router.post("/user/image", response_model=MessageResponse)
async def upload_image(
    background_tasks: BackgroundTasks,
    image: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    queue: EventQueue = Depends(get_queue_client),
    search: SearchIndex = Depends(get_search_index),
):
    extension = ALLOWED_IMAGE_TYPES.get(image.content_type or "")
    if not extension:
        raise ValidationFailed("Wrong file type submitted")

    data = await image.read()
    file_name = f"{random.randrange(10**12)}.{extension}"
    image_url = storage.upload_bytes(
        file_name, data, content_type=image.content_type, token=str(uuid4())
    )
    db.update_user_image(user.user_name, image_url)
    events.publish(
        queue,
        events.USER_IMAGE_CHANGED,
        userName=user.user_name,
        imageUrl=image_url,
    )
    _dispatch_events(background_tasks, db, queue, search)
    return MessageResponse(message="Image uploaded successfully")


@router.get("/users", response_model=dict[str, UserListEntry])
def get_all_users(db: DbClient = Depends(get_db_client)):
    entries = []
    for user in db.list_users():
        entry = user.as_dict()
        entry["id"] = entry.pop("userId")
        entries.append(entry)
    return format_users(entries)


@router.get("/user", response_model=AuthedUserResponse)
def get_authed_user(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    credentials = db.get_user(user.user_name)
    if not credentials:
        raise NotFound("User not found")
    return AuthedUserResponse(
        credentials=credentials.as_dict(),
        favs=[f.as_dict() for f in db.list_favs_by_user(user.user_name)],
        notifications=[
            n.as_dict() for n in db.list_notifications(user.user_name, limit=10)
        ],
    )


@router.post("/user", response_model=MessageResponse)
def add_user_details(
    payload: UserDetailsRequest,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    details = reduce_user_details(bio=payload.bio, location=payload.location)
    db.update_user_details(user.user_name, details)
    return MessageResponse(message="Details added successfully")


@router.get("/user/{user_name}", response_model=UserDetailsResponse)
def get_user_details(user_name: str, db: DbClient = Depends(get_db_client)):
    user = db.get_user(user_name)
    if not user:
        raise NotFound("User not found")
    return UserDetailsResponse(
        user=user.as_dict(),
        posts=[post.as_dict() for post in db.list_posts_by_author(user_name)],
    )


@router.post("/notifications", response_model=MessageResponse)
def mark_notifications_read(
    notification_ids: list[str] = Body(...),
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    updated = db.mark_notifications_read(notification_ids, user.user_name)
    logger.info("Marked %d notifications read for %s", updated, user.user_name)
    return MessageResponse(message="Notifications set to read")


# Search


@router.get("/search", response_model=SearchResponse)
def search_posts(
    q: str = Query(""),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, ge=1, le=100),
    search: SearchIndex = Depends(get_search_index),
):
    return SearchResponse(query=q, hits=search.search(q, limit=limit))


@router.post("/search/reindex", response_model=ReindexResponse)
def reindex_posts(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    search: SearchIndex = Depends(get_search_index),
):
    posts = db.list_posts()
    search.clear()
    count = search.save_objects(to_search_object(post.as_dict()) for post in posts)
    logger.info("%s rebuilt the search index with %d posts", user.user_name, count)
    return ReindexResponse(message="Posts saved on search index successfully", count=count)
