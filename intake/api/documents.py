# intake/api/documents.py
"""
Signed-link downloads for the local document backend (development only;
hosted storage serves its own signed URLs).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from intake.api.deps import document_store
from intake.services.document_store import DocumentStore, DocumentStoreError, LocalDocumentStore

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("intake.api.documents")


@router.get("/{bucket}/{path:path}")
def download(
    bucket: str,
    path: str,
    token: str = Query(..., min_length=1),
    store: DocumentStore = Depends(document_store),
):
    if not isinstance(store, LocalDocumentStore):
        raise HTTPException(status_code=404, detail="Not found")
    try:
        target = store.open_signed(bucket, path, token)
    except DocumentStoreError as e:
        logger.info("document link refused bucket=%s: %s", bucket, e)
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    return FileResponse(target)
