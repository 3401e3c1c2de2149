"""
api/routes/knowledge.py
-----------------------
Knowledge base management for the authenticated tenant.

POST   /knowledge           — Upload a document (quota checked, chunked, embedded)
GET    /knowledge           — List the tenant's documents
PUT    /knowledge/{doc_id}  — Replace content (chunks are recreated)
DELETE /knowledge/{doc_id}  — Delete a document and its chunks
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from supportbot.db.session import get_db
from supportbot.dependencies import get_current_user
from supportbot.models.user import User
from supportbot.schemas.knowledge import DocumentCreate, DocumentRead, DocumentUpdate
from supportbot.services.document_service import DocumentService

router = APIRouter(prefix="/knowledge", tags=["Knowledge"])


@router.post(
    "",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a knowledge document",
)
async def add_document(
    body: DocumentCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> DocumentRead:
    document = await DocumentService.add_document(db, current_user, body.title, body.content)
    return DocumentRead.model_validate(document)


@router.get("", response_model=list[DocumentRead], summary="List knowledge documents")
async def list_documents(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> list[DocumentRead]:
    documents = await DocumentService.list_documents(db, current_user.tenant_id)
    return [DocumentRead.model_validate(d) for d in documents]


@router.put("/{document_id}", response_model=DocumentRead, summary="Replace document content")
async def replace_document(
    document_id: str,
    body: DocumentUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> DocumentRead:
    document = await DocumentService.replace_document_content(
        db, current_user, document_id, body.content
    )
    return DocumentRead.model_validate(document)


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a knowledge document",
)
async def delete_document(
    document_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> None:
    await DocumentService.delete_document(db, current_user.tenant_id, document_id)
