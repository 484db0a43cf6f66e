"""Cloudinary raw-asset URL helpers.

Uploaded books live on Cloudinary as ``raw`` assets, e.g.::

    https://res.cloudinary.com/<cloud>/raw/upload/v1746122082/bookstore/bookFiles/abc.pdf

Browsers frequently cannot open those URLs directly (missing extension,
wrong Content-Type), so the backend rebuilds a canonical download URL from
the cloud name, version and public id.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

CLOUDINARY_HOST = "res.cloudinary.com"


@dataclass(frozen=True)
class CloudinaryAsset:
    """Components of a Cloudinary delivery URL."""

    cloud_name: str
    resource_type: str
    version: Optional[str]
    public_id: str


def parse_cloudinary_url(url: str) -> Optional[CloudinaryAsset]:
    """Split a Cloudinary delivery URL into its components.

    Returns None for URLs that are not Cloudinary uploads. The file
    extension is dropped from the public id.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc.endswith(CLOUDINARY_HOST):
        return None

    segments = [s for s in parts.path.split("/") if s]
    if "upload" not in segments:
        return None
    upload_index = segments.index("upload")
    if upload_index < 2 or upload_index + 1 >= len(segments):
        return None

    cloud_name = segments[upload_index - 2]
    resource_type = segments[upload_index - 1]
    rest = segments[upload_index + 1 :]

    version = None
    if rest[0].startswith("v") and rest[0][1:].isdigit():
        version = rest[0][1:]
        rest = rest[1:]
    if not rest:
        return None

    public_id = "/".join(rest)
    # Strip the extension from the last path component only.
    head, _, tail = public_id.rpartition("/")
    tail = tail.split(".")[0]
    public_id = f"{head}/{tail}" if head else tail
    if not tail:
        return None

    return CloudinaryAsset(
        cloud_name=cloud_name,
        resource_type=resource_type,
        version=version,
        public_id=public_id,
    )


def is_cloudinary_raw_url(url: str) -> bool:
    asset = parse_cloudinary_url(url)
    return asset is not None and asset.resource_type == "raw"


def cloudinary_download_url(url: str, fmt: str = "pdf") -> str:
    """Rebuild the secure raw download URL for a Cloudinary asset.

    Raises:
        ValueError: If ``url`` is not a Cloudinary raw upload URL
    """
    asset = parse_cloudinary_url(url)
    if asset is None or asset.resource_type != "raw":
        raise ValueError(f"Not a Cloudinary raw upload URL: {url}")
    version = f"v{asset.version}/" if asset.version else ""
    return f"https://{CLOUDINARY_HOST}/{asset.cloud_name}/raw/upload/{version}{asset.public_id}.{fmt}"


__all__ = [
    "CloudinaryAsset",
    "cloudinary_download_url",
    "is_cloudinary_raw_url",
    "parse_cloudinary_url",
]
