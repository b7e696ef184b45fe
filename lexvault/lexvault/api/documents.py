import logging
from typing import Annotated
from urllib.parse import quote
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status
from fastapi.responses import StreamingResponse

from lexvault.auth import get_caller_context
from lexvault.context import CallerContext
from lexvault.dependencies import Services, get_services
from lexvault.schemas import (
    DocumentListResponse,
    DocumentQuery,
    DocumentResponse,
    UpdateRequest,
    UploadRequest,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    description: str = Form(""),
    tags: list[str] = Form([]),
    jurisdiction_ids: list[str] = Form(...),
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    """
    Upload a document as multipart form data.

    Repeat the ``tags`` and ``jurisdiction_ids`` fields for multiple values.
    """
    request = UploadRequest(
        title=title,
        description=description,
        tags=tags,
        jurisdiction_ids=jurisdiction_ids,
    )
    # One byte past the limit is enough to reject without buffering the rest.
    data = await file.read(services.documents.max_file_size_bytes + 1)
    return await services.documents.upload(ctx, data, file.filename or "", request)


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    query: Annotated[DocumentQuery, Query()],
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> DocumentListResponse:
    return await services.documents.list_documents(ctx, query)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: UUID,
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    return await services.documents.get(ctx, document_id)


@router.patch("/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: UUID,
    request: UpdateRequest,
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> DocumentResponse:
    return await services.documents.update(ctx, document_id, request)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: UUID,
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> Response:
    await services.documents.delete(ctx, document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{document_id}/download")
async def download_document(
    document_id: UUID,
    ctx: CallerContext = Depends(get_caller_context),
    services: Services = Depends(get_services),
) -> StreamingResponse:
    download = await services.documents.download(ctx, document_id)
    return StreamingResponse(
        download.chunks,
        media_type=download.content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(download.filename)}",
            "Content-Length": str(download.content_length),
        },
    )
