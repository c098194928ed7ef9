# intake/services/document_store.py
"""
Object storage for identity documents.

The intake pipeline only ever writes bytes and records the resulting paths;
reading documents back goes through short-lived signed URLs generated for
the admin reviewer.
"""
from __future__ import annotations

import logging
import os
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from intake.auth.security import create_token, verify_token
from intake.core.config import (
    DOCUMENT_BACKEND,
    DOCUMENT_ROOT,
    PUBLIC_BASE_URL,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
    UPLOAD_TIMEOUT,
)

logger = logging.getLogger("intake.documents")

_EXT_RE = re.compile(r"^[a-z0-9]{1,10}$")


class DocumentStoreError(Exception):
    pass


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


def build_document_path(
    lead_id: str,
    kind: str,
    filename: str,
    *,
    now_ms: Optional[int] = None,
    token: Optional[str] = None,
) -> str:
    """`{lead_id}/{epoch_ms}_{kind}_{random}.{ext}`; the client filename is never reused."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    rnd = token or uuid.uuid4().hex[:16]
    ext = filename.rsplit(".", 1)[-1].lower() if "." in (filename or "") else ""
    if not _EXT_RE.match(ext):
        ext = "bin"
    return f"{lead_id}/{ts}_{kind}_{rnd}.{ext}"


class DocumentStore(ABC):
    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        """Store bytes at bucket/path. Never overwrites; raises DocumentStoreError."""

    @abstractmethod
    def signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """Time-limited read URL; raises DocumentStoreError."""


# ------------------------------ Local disk -----------------------------------

class LocalDocumentStore(DocumentStore):
    """Development backend: files on disk, links signed with the session key."""

    def __init__(self, root: str = DOCUMENT_ROOT, base_url: str = PUBLIC_BASE_URL):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if self.root not in target.parents:
            raise DocumentStoreError("path escapes document root")
        return target

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(bucket, path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise DocumentStoreError(f"object exists: {bucket}/{path}") from e
        except OSError as e:
            raise DocumentStoreError(f"write failed: {bucket}/{path}: {e}") from e
        logger.info("documents: stored bucket=%s path=%s bytes=%d", bucket, path, len(data))

    def signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        if not self._resolve(bucket, path).exists():
            raise DocumentStoreError(f"no such object: {bucket}/{path}")
        token = create_token({"bucket": bucket, "path": path, "scope": "document"}, expires_in=ttl_seconds)
        return f"{self.base_url}/documents/{bucket}/{quote(path)}?token={token}"

    def open_signed(self, bucket: str, path: str, token: str) -> Path:
        """Check a signed link and return the file it grants access to."""
        data = verify_token(token)
        if not data or data.get("scope") != "document" or data.get("bucket") != bucket or data.get("path") != path:
            raise DocumentStoreError("invalid or expired link")
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise DocumentStoreError(f"no such object: {bucket}/{path}")
        return target


# ------------------------------ Supabase Storage -----------------------------

CONNECT_TIMEOUT = float(os.getenv("INTAKE_STORAGE_CONNECT_TIMEOUT", "5"))  # seconds

_RETRY = Retry(
    total=2,
    connect=2,
    read=0,  # an upload that reached the server is not replayed
    backoff_factor=0.5,
    status_forcelist=(502, 503, 504),
    allowed_methods=("POST",),
    raise_on_status=False,
)


class SupabaseDocumentStore(DocumentStore):
    """Supabase Storage REST API, authenticated with the service key."""

    def __init__(
        self,
        base_url: str = SUPABASE_URL,
        service_key: str = SUPABASE_SERVICE_KEY,
        *,
        timeout: float = UPLOAD_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not base_url or not service_key:
            raise DocumentStoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required")
        self.base_url = base_url.rstrip("/")
        self._key = service_key
        self.timeout = timeout
        self._session = session or self._new_session()

    @staticmethod
    def _new_session() -> requests.Session:
        s = requests.Session()
        adapter = HTTPAdapter(max_retries=_RETRY, pool_maxsize=10)
        s.mount("https://", adapter)
        s.mount("http://", adapter)
        return s

    def _headers(self, **extra: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._key}", "apikey": self._key, **extra}

    def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        url = f"{self.base_url}/storage/v1/object/{bucket}/{quote(path)}"
        try:
            r = self._session.post(
                url,
                data=data,
                headers=self._headers(**{"Content-Type": content_type or "application/octet-stream", "x-upsert": "false"}),
                timeout=(CONNECT_TIMEOUT, self.timeout),
            )
        except requests.RequestException as e:
            raise DocumentStoreError(f"upload transport error: {type(e).__name__}") from e
        if r.status_code >= 400:
            raise DocumentStoreError(f"upload rejected: HTTP {r.status_code}")
        logger.info("documents: uploaded bucket=%s path=%s bytes=%d", bucket, path, len(data))

    def signed_url(self, bucket: str, path: str, ttl_seconds: int) -> str:
        url = f"{self.base_url}/storage/v1/object/sign/{bucket}/{quote(path)}"
        try:
            r = self._session.post(
                url,
                json={"expiresIn": int(ttl_seconds)},
                headers=self._headers(),
                timeout=(CONNECT_TIMEOUT, self.timeout),
            )
        except requests.RequestException as e:
            raise DocumentStoreError(f"sign transport error: {type(e).__name__}") from e
        if r.status_code >= 400:
            raise DocumentStoreError(f"sign rejected: HTTP {r.status_code}")
        signed = (r.json() or {}).get("signedURL")
        if not signed:
            raise DocumentStoreError("sign response missing signedURL")
        return f"{self.base_url}/storage/v1{signed}"


# ------------------------------ Provider -------------------------------------

_store: Optional[DocumentStore] = None
_store_lock = threading.Lock()


def get_document_store() -> DocumentStore:
    global _store
    with _store_lock:
        if _store is None:
            if DOCUMENT_BACKEND == "supabase":
                _store = SupabaseDocumentStore()
            else:
                _store = LocalDocumentStore()
            logger.info("documents: backend=%s", DOCUMENT_BACKEND)
        return _store
