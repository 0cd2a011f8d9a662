"""
HTTP client for the upload endpoint that syncs a spreadsheet into a remote table.
"""
import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from tablesync.core.config import settings
from tablesync.models.execution import FileDescriptor
from tablesync.models.task import SyncTarget
from tablesync.scheduler.errors import SyncError, SyncHttpError, SyncRejectedError


MIME_TYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xls": "application/vnd.ms-excel",
    "csv": "text/csv",
    "txt": "text/plain",
}


def mime_type_for(extension: str) -> str:
    return MIME_TYPES.get((extension or "").lower(), "application/octet-stream")


def rows_from_response(data: Dict[str, Any]) -> int:
    """Row count from either a flat ``rowsSynced`` or a nested ``syncResult.syncCount``."""
    if data.get("rowsSynced") is not None:
        return int(data["rowsSynced"])
    sync_result = data.get("syncResult") or {}
    return int(sync_result.get("syncCount") or 0)


class HttpFileSyncer:
    """Posts one file per request as multipart form data."""

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint_url = endpoint_url or settings.sync_endpoint_url
        self.timeout_s = timeout_s or settings.sync_timeout_seconds
        self.transport = transport

    async def sync_file(self, file: FileDescriptor, target: SyncTarget) -> int:
        try:
            content = await asyncio.to_thread(Path(file.path).read_bytes)
        except OSError as e:
            raise SyncError(f"cannot read {file.path}: {e}") from e

        form = {"spreadsheetToken": target.spreadsheet_token}
        if target.app_id:
            form["appId"] = target.app_id
        if target.app_secret:
            form["appSecret"] = target.app_secret
        files = {"file": (file.name, content, mime_type_for(file.extension))}

        timeout = httpx.Timeout(connect=5.0, read=self.timeout_s, write=30.0, pool=None)
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            try:
                resp = await client.post(self.endpoint_url, data=form, files=files)
            except httpx.HTTPError as e:
                raise SyncHttpError(f"upload request failed: {e!r}") from e

        if resp.status_code >= 400:
            reason = (resp.text or "")[:200].replace("\n", " ")
            logger.warning("Upload FAIL file={} http={} reason={}", file.name, resp.status_code, reason)
            raise SyncHttpError(f"upload failed: {resp.status_code} - {reason}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise SyncRejectedError(f"upload returned a non-JSON body for {file.name}") from e
        if not isinstance(data, dict):
            raise SyncRejectedError(f"upload returned an unexpected body for {file.name}")

        if data.get("success") is False or data.get("error") or data.get("syncError"):
            message = data.get("syncError") or data.get("error") or data.get("message") or "upload rejected"
            raise SyncRejectedError(str(message))

        rows = rows_from_response(data)
        logger.info("Upload OK file={} rows={}", file.name, rows)
        return rows
