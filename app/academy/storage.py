from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from flask import url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

logger = logging.getLogger(__name__)

UPLOAD_URL_TTL_SECONDS = 3600
_UPLOAD_TOKEN_SALT = "academy-local-upload"


class StorageError(RuntimeError):
    pass


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def copy(self, src_key: str, dst_key: str) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    def presigned_upload_url(self, key: str, *, content_type: str | None = None) -> tuple[str, str]:
        """Return (url, token) a client can PUT the object bytes to."""
        raise NotImplementedError


def _clean_key(key: str) -> str:
    safe_key = key.lstrip("/").replace("\\", "/")
    if not safe_key or any(part in ("", ".", "..") for part in safe_key.split("/")):
        raise StorageError(f"Invalid storage key: {key!r}")
    return safe_key


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    secret_key: str = ""
    public_base_url: str = ""

    def _path(self, key: str) -> Path:
        return self.root / _clean_key(key)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.is_file():
            raise StorageError(f"Object not found: {key}")
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Delete failed: {key}: {e}") from e

    def copy(self, src_key: str, dst_key: str) -> None:
        src = self._path(src_key)
        if not src.is_file():
            raise StorageError(f"Object not found: {src_key}")
        dst = self._path(dst_key)
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)

    def public_url(self, key: str) -> str:
        key = _clean_key(key)
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return url_for("routes.media", key=key)

    def _serializer(self) -> URLSafeTimedSerializer:
        if not self.secret_key:
            raise StorageError("SECRET_KEY is required to sign local upload URLs.")
        return URLSafeTimedSerializer(self.secret_key, salt=_UPLOAD_TOKEN_SALT)

    def presigned_upload_url(self, key: str, *, content_type: str | None = None) -> tuple[str, str]:
        token = self._serializer().dumps({"key": _clean_key(key), "content_type": content_type})
        return url_for("routes.storage_upload", token=token), token

    def verify_upload_token(self, token: str) -> dict:
        try:
            data = self._serializer().loads(token, max_age=UPLOAD_URL_TTL_SECONDS)
        except SignatureExpired as e:
            raise StorageError("Upload URL has expired.") from e
        except BadSignature as e:
            raise StorageError("Upload URL is invalid.") from e
        if not isinstance(data, dict) or not data.get("key"):
            raise StorageError("Upload URL is invalid.")
        return data


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def _client(self):
        import boto3  # type: ignore
        from botocore.config import Config  # type: ignore

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=Config(connect_timeout=5, read_timeout=30, retries={"max_attempts": 3}),
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=_clean_key(key), Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=_clean_key(key))
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError  # type: ignore

        try:
            self._client().head_object(Bucket=self.bucket, Key=_clean_key(key))
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        try:
            self._client().delete_object(Bucket=self.bucket, Key=_clean_key(key))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete failed: {key}: {e}") from e

    def copy(self, src_key: str, dst_key: str) -> None:
        from botocore.exceptions import ClientError  # type: ignore

        try:
            self._client().copy_object(
                Bucket=self.bucket,
                Key=_clean_key(dst_key),
                CopySource={"Bucket": self.bucket, "Key": _clean_key(src_key)},
            )
        except ClientError as e:
            raise StorageError(f"Copy failed: {src_key} -> {dst_key}: {e}") from e

    def public_url(self, key: str) -> str:
        key = _clean_key(key)
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"https://{self.bucket}.{self.endpoint}/{key}"

    def presigned_upload_url(self, key: str, *, content_type: str | None = None) -> tuple[str, str]:
        params: dict[str, object] = {"Bucket": self.bucket, "Key": _clean_key(key)}
        if content_type:
            params["ContentType"] = content_type
        url = self._client().generate_presigned_url(
            "put_object",
            Params=params,
            ExpiresIn=UPLOAD_URL_TTL_SECONDS,
        )
        # S3 carries the signature in the URL itself.
        return url, ""


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    public_base_url = (config.get("PUBLIC_MEDIA_BASE_URL") or "").strip()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=public_base_url,
        )
    root_setting = (config.get("LOCAL_STORAGE_ROOT") or "").strip()
    root = Path(root_setting) if root_setting else Path(os.getcwd()) / "storage"
    return LocalStorage(root=root, secret_key=str(config.get("SECRET_KEY") or ""), public_base_url=public_base_url)
