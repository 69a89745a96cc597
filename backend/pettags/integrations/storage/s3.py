from __future__ import annotations

import logging
import os

import boto3
from botocore.client import Config as BotoConfig
from flask import current_app, url_for

logger = logging.getLogger(__name__)


def _client():
    cfg = current_app.config
    return boto3.client(
        's3',
        region_name=cfg.get("S3_REGION") or None,
        aws_access_key_id=cfg.get("S3_ACCESS_KEY_ID") or None,
        aws_secret_access_key=cfg.get("S3_SECRET_ACCESS_KEY") or None,
        endpoint_url=cfg.get("S3_ENDPOINT_URL") or None,
        config=BotoConfig(s3={'addressing_style': 'virtual'}),
    )


def _public_url(bucket: str, key: str) -> str:
    base = current_app.config.get("S3_PUBLIC_URL_BASE")
    if base:
        return f"{base.rstrip('/')}/{key}"
    region = current_app.config.get("S3_REGION") or 'us-east-1'
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def save_file(data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
    """Store ``data`` under ``key`` and return its public URL.

    Uses S3 when S3_BUCKET_NAME is configured, otherwise UPLOAD_FOLDER served by /uploads.
    """
    bucket = current_app.config.get("S3_BUCKET_NAME")
    if bucket:
        _client().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type, ACL='public-read')
        return _public_url(bucket, key)
    upload_folder = current_app.config["UPLOAD_FOLDER"]
    path = os.path.join(upload_folder, key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'wb') as f:
        f.write(data)
    # Relative URL; Nginx proxies /uploads
    return url_for("uploads", filename=key, _external=False)


def delete_file(url: str | None) -> bool:
    """Best-effort removal of a file previously returned by save_file."""
    if not url:
        return False
    bucket = current_app.config.get("S3_BUCKET_NAME")
    try:
        if bucket:
            base = current_app.config.get("S3_PUBLIC_URL_BASE") or f"https://{bucket}.s3."
            if not url.startswith(base):
                return False
            key = url.split(".amazonaws.com/", 1)[-1] if ".amazonaws.com/" in url else url[len(base):].lstrip('/')
            _client().delete_object(Bucket=bucket, Key=key)
            return True
        marker = "/uploads/"
        if marker not in url:
            return False
        path = os.path.join(current_app.config["UPLOAD_FOLDER"], url.split(marker, 1)[1])
        if os.path.isfile(path):
            os.remove(path)
            return True
    except Exception as e:
        logger.warning("Could not delete stored file %s: %s", url, e)
    return False
