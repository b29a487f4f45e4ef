"""JSON conversion for pull request snapshots.

Used by SQLiteStore (snapshot column) and by ``prtalk import`` to read a PR
exported as JSON. Datetimes travel as ISO-8601 strings; unknown keys in the
input are ignored so exports from newer versions still load.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any

from prtalk_store.models import (
    AutomatedSummary,
    CommentEntry,
    CommitEntry,
    FileChange,
    PullRequestRecord,
    PullRequestSnapshot,
    RepositoryRecord,
    ReviewEntry,
    UserRef,
)

_DATETIME_FIELDS = {
    "created_at",
    "updated_at",
    "merged_at",
    "closed_at",
    "submitted_at",
    "committed_at",
    "analysis_timestamp",
}


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).replace("Z", "+00:00")
    return datetime.fromisoformat(text)


def _build(cls, data: dict | None):
    if data is None:
        return None
    names = {f.name for f in dataclasses.fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in names:
            continue
        if key in _DATETIME_FIELDS:
            value = _parse_datetime(value)
        kwargs[key] = value
    return cls(**kwargs)


def _user(data: dict | str | None) -> UserRef:
    if isinstance(data, str):
        return UserRef(login=data)
    return _build(UserRef, data or {"login": "unknown"})


def snapshot_to_dict(snapshot: PullRequestSnapshot) -> dict:
    return _encode(dataclasses.asdict(snapshot))


def snapshot_from_dict(data: dict) -> PullRequestSnapshot:
    """Rebuild a snapshot from its dict form.

    Raises KeyError / TypeError / ValueError on structurally invalid input;
    callers surface those as usage errors.
    """
    pull_data = dict(data["pull"])
    pull_data["author"] = _user(pull_data.get("author"))
    pull = _build(PullRequestRecord, pull_data)

    reviews = []
    for item in data.get("reviews") or []:
        item = dict(item)
        item["reviewer"] = _user(item.get("reviewer"))
        reviews.append(_build(ReviewEntry, item))

    comments = []
    for item in data.get("comments") or []:
        item = dict(item)
        item["author"] = _user(item.get("author"))
        comments.append(_build(CommentEntry, item))

    return PullRequestSnapshot(
        pull=pull,
        repository=_build(RepositoryRecord, data.get("repository")),
        summary=_build(AutomatedSummary, data.get("summary")),
        files=[_build(FileChange, f) for f in data.get("files") or []],
        reviews=reviews,
        comments=comments,
        commits=[_build(CommitEntry, c) for c in data.get("commits") or []],
    )
