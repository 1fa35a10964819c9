"""
Wire and in-process shapes for bookmark change notifications.

Every successful mutation of the bookmark store produces exactly one
ChangeEvent. The JSON form matches what the dashboard script consumes:

    {"type": "INSERT", "record": {...}}
    {"type": "UPDATE", "record": {...}, "old_record": {...} | null}
    {"type": "DELETE", "old_record": {"id": "..."}}
"""

from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class BookmarkRecord(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    user_id: int
    title: str
    url: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive timestamps; they are stored as UTC
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class RecordRef(BaseModel):
    """Identity of a record that no longer exists."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str


class InsertEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["INSERT"] = "INSERT"
    record: BookmarkRecord


class UpdateEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["UPDATE"] = "UPDATE"
    record: BookmarkRecord
    old_record: Optional[BookmarkRecord] = None


class DeleteEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["DELETE"] = "DELETE"
    old_record: RecordRef

    @classmethod
    def for_id(cls, record_id: str) -> "DeleteEvent":
        return cls(old_record=RecordRef(id=record_id))


ChangeEvent = Annotated[Union[InsertEvent, UpdateEvent, DeleteEvent], Field(discriminator="type")]
change_event_adapter = TypeAdapter(ChangeEvent)


class SnapshotMessage(BaseModel):
    """Full ordered state, sent on connect and after a resync."""
    type: Literal["SNAPSHOT"] = "SNAPSHOT"
    records: List[BookmarkRecord]


class ErrorMessage(BaseModel):
    type: Literal["ERROR"] = "ERROR"
    action: str = ""
    detail: str


def parse_event(payload) -> Union[InsertEvent, UpdateEvent, DeleteEvent]:
    return change_event_adapter.validate_python(payload)


def to_message(item: BaseModel) -> dict:
    return item.model_dump(mode="json")
