"""
S3 Utilities — Client Init • Object Lookup • Copy • Delete
==========================================================

Purpose
-------
Object storage used by the chat pipeline:
- Initialize an S3 client with Signature V4
- Check that an uploaded file referenced by a turn exists (`head_object`)
- Duplicate an object into another user's namespace when a conversation is forked
- Delete objects (cleanup after a failed fork)

Key layout
----------
``<hash(user_id)>/<hash(conversation_id)>/<name>-<file_id>.<ext>`` where
``hash`` is the first 16 hex chars of SHA-256. Public URLs are
``STORAGE_PUBLIC_URL/<key>``.

Configuration (from `chat_backend.database.config.config.settings`)
-------------------------------------------------------------------
- AWS_ACCESS_KEY, AWS_SECRET_KEY, REGION : client credentials
- BUCKET_NAME        : Target S3 bucket
- STORAGE_PUBLIC_URL : Base URL under which objects are served

Security Notes
--------------
- Do NOT log credentials.
"""

import hashlib
import os
import uuid
from urllib.parse import quote, unquote

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from chat_backend.database.config.config import Settings


def hash_id(value) -> str:
    """First 16 hex characters of the SHA-256 of ``str(value)``."""
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:16]


def build_key(user_id, conversation_id, name: str, file_id: str) -> str:
    """Storage key of a file owned by `user_id` inside `conversation_id`."""
    stem, extension = os.path.splitext(name)
    return f"{hash_id(user_id)}/{hash_id(conversation_id)}/{stem}-{file_id}{extension}"


def get_client(settings: Settings):
    """
    Initialize and return a low-level S3 client configured for Signature V4.

    Returns:
        botocore.client.S3: An S3 client ready for object operations.
    """
    return boto3.client(
        's3',
        aws_access_key_id=settings.AWS_ACCESS_KEY,
        aws_secret_access_key=settings.AWS_SECRET_KEY,
        region_name=settings.REGION,
        config=Config(signature_version="s3v4"),
    )


class ObjectStorage:
    """
    Thin wrapper over an S3 bucket.

    Parameters
    ----------
    s3_client : botocore.client.S3
        Client returned by `get_client()`.
    bucket : str
        Bucket name.
    public_base_url : str
        Base URL objects are served from; file parts must point below it.
    """

    def __init__(self, s3_client, bucket: str, public_base_url: str):
        self.s3_client = s3_client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorage":
        return cls(get_client(settings), settings.BUCKET_NAME, settings.STORAGE_PUBLIC_URL)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    def key_from_url(self, url: str) -> str | None:
        """Object key behind a public URL, or ``None`` for foreign URLs."""
        prefix = self.public_base_url + "/"
        if not url.startswith(prefix):
            return None
        return unquote(url[len(prefix):]) or None

    def exists(self, url: str) -> bool:
        """
        True when `url` points to an object in this bucket.

        Raises:
            botocore.exceptions.ClientError: for errors other than a missing object.
        """
        key = self.key_from_url(url)
        if key is None:
            return False
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def duplicate(self, url: str, name: str, user_id, conversation_id) -> dict:
        """
        Copy the object behind `url` into the namespace of `user_id` / `conversation_id`.

        Returns:
            dict: ``{"key", "file_id", "url"}`` of the copy.

        Raises:
            ValueError: if `url` isn't served by this storage.
            botocore.exceptions.ClientError: if the copy fails.
        """
        source_key = self.key_from_url(url)
        if source_key is None:
            raise ValueError(f"Invalid storage URL: {url}")
        file_id = str(uuid.uuid4())
        key = build_key(user_id, conversation_id, name, file_id)
        self.s3_client.copy_object(
            Bucket=self.bucket,
            Key=key,
            CopySource={"Bucket": self.bucket, "Key": source_key},
        )
        return {"key": key, "file_id": file_id, "url": self.public_url(key)}

    def delete(self, keys: list[str]) -> None:
        """Delete objects by key (no-op for an empty list)."""
        if not keys:
            return
        self.s3_client.delete_objects(
            Bucket=self.bucket,
            Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
        )
