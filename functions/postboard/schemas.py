"""
Pydantic schemas for the postboard API.

Field names are camelCase to match the JSON the web client consumes.
Request fields are optional so that missing values reach the handler's own
validation and are reported with the same 400 body as empty ones.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class PostCreateRequest(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    category: Optional[str] = ""


class CommentRequest(BaseModel):
    body: Optional[str] = None


class SignupRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    confirmPassword: Optional[str] = None
    userName: Optional[str] = Field(default=None, max_length=64)


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserDetailsRequest(BaseModel):
    bio: Optional[str] = Field(default=None, max_length=1024)
    location: Optional[str] = Field(default=None, max_length=256)


class Post(BaseModel):
    id: str
    title: str
    body: str
    category: str
    author: str
    authorImage: Optional[str] = None
    createdAt: str
    commentCount: int
    favCount: int
    voteScore: int


class Comment(BaseModel):
    id: str
    postId: str
    body: str
    userName: str
    userImage: Optional[str] = None
    createdAt: str


class Fav(BaseModel):
    id: str
    postId: str
    userName: str


class Vote(BaseModel):
    id: str
    postId: str
    userName: str


class FullPost(Post):
    comments: list[Comment]
    favs: list[Fav]
    upvotes: list[Vote]
    downvotes: list[Vote]


class VoteResponse(BaseModel):
    postId: str
    voteScore: int
    upvotes: list[Vote]
    downvotes: list[Vote]


class FavResponse(BaseModel):
    id: str
    favCount: int
    favs: list[Fav]


class Notification(BaseModel):
    notificationId: str
    recipient: str
    sender: str
    type: Literal["fav", "comment"]
    postId: str
    read: bool
    createdAt: str


class User(BaseModel):
    userName: str
    userId: str
    email: str
    imageUrl: str
    bio: str
    location: str
    createdAt: str


class UserListEntry(BaseModel):
    id: str
    email: str
    userName: str
    imageUrl: str
    bio: str
    location: str
    createdAt: str


class AuthedUserResponse(BaseModel):
    credentials: User
    favs: list[Fav]
    notifications: list[Notification]


class UserDetailsResponse(BaseModel):
    user: User
    posts: list[Post]


class TokenResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class SearchResponse(BaseModel):
    query: str
    hits: list[dict]


class ReindexResponse(BaseModel):
    message: str
    count: int
