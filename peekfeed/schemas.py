"""Entities decoded from the remote API and from the store's `data` blobs.

Post and BoardInfo are the only place JSON blobs are encoded or decoded.
Everything past the store boundary works with these objects.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from peekfeed.errors import MalformedRowError


class Post(BaseModel):
    """An OP (resto == 0) or a reply, identified by (board, no)."""

    model_config = ConfigDict(extra="allow")

    no: int
    board: str
    resto: int = 0
    time: int = 0
    tim: Optional[int] = None
    ext: Optional[str] = None
    sub: Optional[str] = None
    com: Optional[str] = None
    name: Optional[str] = None
    filename: Optional[str] = None

    # Local state, never part of the serialized blob.
    op_thread: Optional[Post] = Field(default=None, exclude=True)
    last_fetched: float = Field(default=0, exclude=True)
    blocked: bool = Field(default=False, exclude=True)

    @field_validator("resto", "time", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0 if value is None else value

    @field_validator("board")
    @classmethod
    def _board_required(cls, value):
        if not value:
            raise ValueError("board is required")
        return value

    @property
    def thread_no(self) -> int:
        return self.no if self.resto == 0 else self.resto

    @property
    def is_op(self) -> bool:
        return self.resto == 0

    @property
    def has_media(self) -> bool:
        return bool(self.tim) and bool(self.ext)

    @property
    def moderation_text(self) -> str:
        return "{} {} {}".format(self.sub or "", self.com or "", self.filename or "").lower()

    def to_data(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_data(cls, data: str, **local) -> Post:
        post = cls.model_validate_json(data)
        for key, value in local.items():
            setattr(post, key, value)
        return post

    @classmethod
    def from_remote(cls, raw: dict, board: str) -> Post:
        """Build a Post from an API payload; raises MalformedRowError."""
        if not isinstance(raw, dict):
            raise MalformedRowError("Expected a JSON object, got {!r}".format(type(raw).__name__))
        payload = dict(raw)
        payload["board"] = board
        payload["resto"] = raw.get("resto") or 0
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise MalformedRowError(str(e)) from e


Post.model_rebuild()


class BoardInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    board: str
    title: str = ""
    ws_board: int = 1

    @property
    def work_safe(self) -> bool:
        return self.ws_board == 1

    def to_data(self) -> str:
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_data(cls, data: str) -> BoardInfo:
        return cls.model_validate_json(data)
