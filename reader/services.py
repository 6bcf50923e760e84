"""Reader services: wiring between routes and the komic service layer.

Builds the media store and service objects for a request from the app's own
config, reads multipart uploads and maps domain errors to HTTP errors. Keeps
that plumbing out of the route functions.
"""

from __future__ import annotations

from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, UploadFile
from sqlmodel import Session

from komic.config import KomicConfig
from komic.database import get_session
from komic.errors import KomicError
from komic.groups import GroupService
from komic.moderation import ModerationService
from komic.repository import Repository
from komic.storage import MediaStore
from komic.submissions import SubmissionService, Upload


def http_error(exc: KomicError) -> HTTPException:
    """HTTPException carrying the domain error's status and message."""
    return HTTPException(status_code=exc.status_code, detail=exc.message)


def app_config(request: Request) -> KomicConfig:
    return request.app.state.config


def repository(session: Session) -> Repository:
    return Repository(session)


def group_service(session: Session) -> GroupService:
    return GroupService(session)


def submission_service(
    session: Session = Depends(get_session),
    config: KomicConfig = Depends(app_config),
) -> SubmissionService:
    return SubmissionService(session, MediaStore.from_config(config), config.uploads)


def moderation_service(
    session: Session = Depends(get_session),
    config: KomicConfig = Depends(app_config),
) -> ModerationService:
    return ModerationService(session, MediaStore.from_config(config))


def read_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    """Read a multipart file into memory; empty or missing fields give None.

    Called from sync handlers, which run in the threadpool.
    """
    if file is None or not file.filename:
        return None
    data = file.file.read()
    if not data:
        return None
    return Upload(
        filename=file.filename,
        content_type=file.content_type or "application/octet-stream",
        data=data,
    )


def read_uploads(files: Iterable[UploadFile]) -> list[Upload]:
    uploads = []
    for file in files or []:
        upload = read_upload(file)
        if upload is not None:
            uploads.append(upload)
    return uploads
