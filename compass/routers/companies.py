import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from compass.database import get_db
from compass.dependencies import get_current_user, get_owned_company
from compass.models import Company, Document, MarketResearch, Note, Task
from compass.schemas.companies import CompanyCreate, CompanyOut, CompanyUpdate

logger = logging.getLogger(__name__)

router = APIRouter()


async def _name_taken(db: AsyncSession, user_id, name: str, exclude_id=None) -> bool:
    query = select(Company.id).where(
        Company.user_id == user_id,
        func.lower(Company.name) == name.lower(),
    )
    if exclude_id is not None:
        query = query.where(Company.id != exclude_id)
    return (await db.execute(query.limit(1))).scalar_one_or_none() is not None


@router.get("", response_model=list[CompanyOut], status_code=200)
async def list_companies(
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
):
    """
    List the caller's companies, oldest first.

    **Response:** list[CompanyOut]
    **Errors:** 401 (unauthorized)
    """
    rows = (
        await db.execute(
            select(Company).where(Company.user_id == current_user.id).order_by(Company.created_at)
        )
    ).scalars().all()
    return [CompanyOut.model_validate(c) for c in rows]


@router.post("", response_model=CompanyOut, status_code=201)
async def create_company(
    payload: CompanyCreate,
    db: AsyncSession = Depends(get_db),
    current_user=Depends(get_current_user),
) -> CompanyOut:
    """
    Create a new company.

    **Request:** CompanyCreate (name, description?, website?)
    **Response:** CompanyOut
    **Errors:** 409 (company exists), 401 (unauthorized)
    """
    if await _name_taken(db, current_user.id, payload.name):
        raise HTTPException(status_code=409, detail=f"Company '{payload.name}' already exists")

    company = Company(user_id=current_user.id, **payload.model_dump())
    db.add(company)
    await db.commit()
    await db.refresh(company)
    logger.info("Created company %s (%s)", company.id, company.name)
    return CompanyOut.model_validate(company)


@router.get("/{company_id}", response_model=CompanyOut, status_code=200)
async def get_company(company: Company = Depends(get_owned_company)) -> CompanyOut:
    """
    Get a single company by ID.

    **Errors:** 404 (company not found), 401 (unauthorized)
    """
    return CompanyOut.model_validate(company)


@router.patch("/{company_id}", response_model=CompanyOut, status_code=200)
async def update_company(
    payload: CompanyUpdate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> CompanyOut:
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is None:
        raise HTTPException(status_code=400, detail="Company name cannot be null")
    if changes.get("name") and await _name_taken(db, company.user_id, changes["name"], exclude_id=company.id):
        raise HTTPException(status_code=409, detail=f"Company '{changes['name']}' already exists")

    for field, value in changes.items():
        setattr(company, field, value)

    await db.commit()
    await db.refresh(company)
    return CompanyOut.model_validate(company)


@router.delete("/{company_id}", status_code=200)
async def delete_company(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Delete a company together with its tasks, notes, documents and research.

    **Response:** {status: "deleted"}
    **Errors:** 404 (company not found), 401 (unauthorized)
    """
    for model in (Task, Note, Document, MarketResearch):
        await db.execute(delete(model).where(model.company_id == company.id))
    await db.delete(company)
    await db.commit()
    logger.info("Deleted company %s", company.id)
    return {"status": "deleted"}
