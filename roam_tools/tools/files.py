"""File tools via the Roam Local API.

Files hosted by Roam are addressed by their URL. Contents travel as base64
in both directions.
"""

import base64
import binascii
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiofiles

from ..utils.error_utils import ErrorCode, RoamError
from ..utils.results import ToolResponse, image_result, text_result
from .context import ToolContext

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(name: str) -> str:
    """Media type from a file name or URL path."""
    path = urlparse(name).path or name
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_MIME_TYPE


async def file_get(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Download a Roam-hosted file.

    Args:
        ctx: Call context with a graph-bound client
        args: url

    Returns:
        Binary envelope carrying base64 data and its media type

    Raises:
        RoamError: API_ERROR if Roam returned no data
    """
    url = args["url"]
    response = await ctx.roam.call("file.get", [{"url": url, "format": "base64"}])
    result = response.result

    mime_type: Optional[str] = None
    if isinstance(result, dict):
        mime_type = result.get("mimetype") or result.get("mimeType")
        result = result.get("base64")

    if not result:
        raise RoamError(f"Failed to get file: {url}", ErrorCode.API_ERROR)
    return image_result(result, mime_type or guess_mime_type(url))


async def _read_base64(path: Path) -> str:
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise RoamError(f"Cannot read {path}: {e.strerror or e}", ErrorCode.VALIDATION_ERROR) from e
    return base64.b64encode(data).decode("ascii")


async def file_upload(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    """Upload a file to Roam from a local path or base64 data.

    Args:
        ctx: Call context with a graph-bound client
        args: filePath or base64 (exactly one), filename, mimetype

    Returns:
        ``{"url": ...}`` of the uploaded file
    """
    has_path = "filePath" in args
    has_data = "base64" in args
    if has_path == has_data:
        raise RoamError(
            "Provide exactly one of 'filePath' or 'base64'.", ErrorCode.VALIDATION_ERROR
        )

    if has_path:
        path = Path(args["filePath"]).expanduser()
        data = await _read_base64(path)
        filename = args.get("filename", path.name)
    else:
        data = args["base64"]
        try:
            base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise RoamError("'base64' is not valid base64 data.", ErrorCode.VALIDATION_ERROR) from e
        filename = args.get("filename")
        if not filename:
            raise RoamError(
                "'filename' is required when uploading base64 data.", ErrorCode.VALIDATION_ERROR
            )

    mime_type = args.get("mimetype") or guess_mime_type(filename)
    payload = {"base64": data, "filename": filename, "mimetype": mime_type}
    response = await ctx.roam.call("file.upload", [payload])
    return text_result({"url": response.result})


async def file_delete(ctx: ToolContext, args: Dict[str, Any]) -> ToolResponse:
    await ctx.roam.call("file.delete", [{"url": args["url"]}])
    return text_result({"success": True})
