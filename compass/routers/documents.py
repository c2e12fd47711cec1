"""Company document upload, download, and management."""
import io
import logging
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from compass.config import get_settings
from compass.database import get_db
from compass.dependencies import get_owned_company
from compass.models.company import Company
from compass.models.document import Document
from compass.schemas.documents import DocumentOut

logger = logging.getLogger(__name__)

router = APIRouter()

DEFAULT_MIME = "application/octet-stream"


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback name plus the RFC 5987 UTF-8 name."""
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("\\", "_").replace('"', "_")
    fallback = "".join(c if c.isprintable() else "_" for c in fallback) or "download"
    encoded = quote(filename, safe="")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"


@router.post("", response_model=DocumentOut, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> DocumentOut:
    """
    Upload a file for a company. The bytes are stored in the database.

    **Errors:** 400 (empty file), 413 (file too large), 404 (company not found)
    """
    max_bytes = get_settings().max_upload_bytes
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File size exceeds {max_bytes // (1024 * 1024)}MB limit",
        )

    document = Document(
        company_id=company.id,
        filename=file.filename or "document",
        file_size=len(content),
        mime_type=file.content_type or DEFAULT_MIME,
        file_content=content,
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)
    logger.info(f"Stored document {document.filename} ({document.file_size} bytes) for company {company.id}")
    return DocumentOut.model_validate(document)


@router.get("", response_model=list[DocumentOut], status_code=200)
async def list_documents(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
):
    """Document metadata for a company, newest first."""
    rows = (
        await db.execute(
            select(Document)
            .where(Document.company_id == company.id)
            .order_by(Document.created_at.desc())
        )
    ).scalars().all()
    return [DocumentOut.model_validate(d) for d in rows]


@router.get("/{document_id}/download")
async def download_document(
    document_id: UUID,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Document)
        .options(undefer(Document.file_content))
        .where(Document.id == document_id, Document.company_id == company.id)
    )
    document = result.scalar_one_or_none()
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return StreamingResponse(
        io.BytesIO(document.file_content),
        media_type=document.mime_type or DEFAULT_MIME,
        headers={"Content-Disposition": content_disposition(document.filename)},
    )


@router.delete("/{document_id}", status_code=200)
async def delete_document(
    document_id: UUID,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    document = await db.get(Document, document_id)
    if document is None or document.company_id != company.id:
        raise HTTPException(status_code=404, detail="Document not found")
    await db.delete(document)
    await db.commit()
    return {"status": "deleted"}
