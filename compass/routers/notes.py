from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compass.database import get_db
from compass.dependencies import get_owned_company
from compass.models.company import Company
from compass.models.note import Note
from compass.schemas.notes import NoteCreate, NoteOut, NoteUpdate

router = APIRouter()


async def _get_note(db: AsyncSession, company: Company, note_id: UUID) -> Note:
    note = await db.get(Note, note_id)
    if note is None or note.company_id != company.id:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.get("", response_model=list[NoteOut], status_code=200)
async def list_notes(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
):
    rows = (
        await db.execute(
            select(Note).where(Note.company_id == company.id).order_by(Note.created_at.desc())
        )
    ).scalars().all()
    return [NoteOut.model_validate(n) for n in rows]


@router.post("", response_model=NoteOut, status_code=201)
async def create_note(
    payload: NoteCreate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> NoteOut:
    note = Note(company_id=company.id, **payload.model_dump())
    db.add(note)
    await db.commit()
    await db.refresh(note)
    return NoteOut.model_validate(note)


@router.patch("/{note_id}", response_model=NoteOut, status_code=200)
async def update_note(
    note_id: UUID,
    payload: NoteUpdate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> NoteOut:
    note = await _get_note(db, company, note_id)
    changes = payload.model_dump(exclude_unset=True)
    if "title" in changes and changes["title"] is None:
        raise HTTPException(status_code=400, detail="title cannot be null")

    for field, value in changes.items():
        setattr(note, field, value)
    await db.commit()
    await db.refresh(note)
    return NoteOut.model_validate(note)


@router.delete("/{note_id}", status_code=200)
async def delete_note(
    note_id: UUID,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    note = await _get_note(db, company, note_id)
    await db.delete(note)
    await db.commit()
    return {"status": "deleted"}
