from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import BinaryIO

from werkzeug.utils import secure_filename

from app.senexus.errors import ValidationError


class StorageError(RuntimeError):
    pass


def build_upload_key(filename: str, *, prefix: str = "uploads", upload_date: date | None = None) -> str:
    """Unique, date-bucketed key: uploads/2025-01-31/<hex>-logo.png"""
    upload_date = upload_date or date.today()
    safe = secure_filename(filename) or "file.bin"
    return f"{prefix}/{upload_date.isoformat()}/{uuid.uuid4().hex[:12]}-{safe}"


def check_upload(data: bytes, content_type: str | None, *, max_size: int, allowed_types: frozenset[str] | None) -> None:
    if not data:
        raise ValidationError("No file provided", details={"file": "Empty upload."})
    if len(data) > max_size:
        raise ValidationError(
            f"File size exceeds maximum allowed size of {max_size // (1024 * 1024) or 1}MB",
            details={"file": f"{len(data)} bytes > {max_size}."},
        )
    if allowed_types and (content_type or "") not in allowed_types:
        raise ValidationError(
            f"File type {content_type} is not allowed",
            details={"file": f"Allowed types: {', '.join(sorted(allowed_types))}"},
        )


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    def upload(
        self,
        data: bytes,
        filename: str,
        *,
        content_type: str | None,
        max_size: int,
        allowed_types: frozenset[str] | None = None,
    ) -> str:
        """Validate size/type, store, and return the public URL."""
        check_upload(data, content_type, max_size=max_size, allowed_types=allowed_types)
        key = build_upload_key(filename)
        self.put_bytes(key, data, content_type=content_type)
        return self.public_url(key)


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    base_url: str = "/files"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Key escapes storage root: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        try:
            return self._path(key).is_file()
        except StorageError:
            return False

    def public_url(self, key: str) -> str:
        return f"{self.base_url.rstrip('/')}/{key.lstrip('/')}"


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {"ACL": "public-read"}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def public_url(self, key: str) -> str:
        if self.endpoint:
            return f"https://{self.bucket}.{self.endpoint}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"


@dataclass(frozen=True)
class ZiplineStorage(Storage):
    """
    Zipline image host. Files are pushed with a multipart POST to /api/upload;
    the host picks the final URL, so ``upload`` is overridden instead of put_bytes.
    """

    url: str
    token: str
    compression_percent: int = 80
    timeout_seconds: int = 30

    def _multipart(self, data: bytes, filename: str, content_type: str) -> tuple[bytes, str]:
        boundary = uuid.uuid4().hex
        parts = [
            f"--{boundary}\r\n".encode(),
            f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'.encode(),
            f"Content-Type: {content_type}\r\n\r\n".encode(),
            data,
            b"\r\n",
        ]
        if content_type.startswith("image/") and self.compression_percent < 100:
            parts += [
                f"--{boundary}\r\n".encode(),
                b'Content-Disposition: form-data; name="compression_percent"\r\n\r\n',
                str(self.compression_percent).encode(),
                b"\r\n",
            ]
        parts.append(f"--{boundary}--\r\n".encode())
        return b"".join(parts), f"multipart/form-data; boundary={boundary}"

    def upload(
        self,
        data: bytes,
        filename: str,
        *,
        content_type: str | None,
        max_size: int,
        allowed_types: frozenset[str] | None = None,
    ) -> str:
        if not self.url or not self.token:
            raise StorageError("Zipline configuration is missing (ZIPLINE_URL / ZIPLINE_TOKEN).")
        check_upload(data, content_type, max_size=max_size, allowed_types=allowed_types)
        body, ctype = self._multipart(data, secure_filename(filename) or "file.bin", content_type or "application/octet-stream")
        req = urllib.request.Request(self.url.rstrip("/") + "/api/upload", data=body, method="POST")
        req.add_header("Authorization", self.token)
        req.add_header("Content-Type", ctype)
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="ignore")
            raise StorageError(f"Upload failed with status {e.code}: {detail[:300]}") from e
        except urllib.error.URLError as e:
            raise StorageError(f"Zipline unreachable: {e.reason}") from e

        try:
            payload = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise StorageError("Invalid JSON from Zipline") from e
        files = payload.get("files") if isinstance(payload, dict) else None
        if not files:
            raise StorageError("No file URL returned from Zipline")
        first = files[0]
        return first if isinstance(first, str) else str(first.get("url") or "")


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    if backend == "zipline":
        return ZiplineStorage(
            url=(config.get("ZIPLINE_URL") or "").strip(),
            token=(config.get("ZIPLINE_TOKEN") or "").strip(),
        )
    # default local
    root = Path(config.get("STORAGE_ROOT") or Path(os.getcwd()) / "storage")
    return LocalStorage(root=root)
