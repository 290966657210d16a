"""
Station photo download.

Attachment rows store either a directory in ``path`` plus a file name in
``name``, or (older rows) the whole file path in ``path``. Relative paths
resolve against EV_UPLOAD_ROOT.
"""

import os
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from models import CurrentUser
from middleware import get_current_user

logger = logging.getLogger("ev-admin.attachments")

router = APIRouter(prefix="/api/attachment", tags=["attachments"])

UPLOAD_ROOT = os.environ.get("EV_UPLOAD_ROOT", os.getcwd())


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def resolve_attachment_path(path: str, name: Optional[str], root: Optional[str] = None) -> str:
    root = root or UPLOAD_ROOT
    if name:
        return os.path.abspath(os.path.join(root, path or "", name))
    if os.path.isabs(path):
        return path
    return os.path.abspath(os.path.join(root, path))


@router.get("/{attachment_id}")
def get_attachment(attachment_id: int, user: CurrentUser = Depends(get_current_user)):
    try:
        with _get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT path, name FROM attachment WHERE id = %s", (attachment_id,))
            row = cursor.fetchone()
    except Exception as e:
        logger.error("GET /api/attachment/%s failed: %s", attachment_id, e)
        raise HTTPException(status_code=500, detail="Internal Server Error")

    if not row:
        raise HTTPException(status_code=404, detail="Attachment record not found")

    file_path = resolve_attachment_path(row[0] or "", row[1])
    if not os.path.isfile(file_path):
        logger.error("Attachment #%s missing at %s", attachment_id, file_path)
        raise HTTPException(status_code=404, detail="File not found on server disk")

    return FileResponse(file_path)
