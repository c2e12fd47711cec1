from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compass.database import get_db
from compass.dependencies import get_owned_company
from compass.models.company import Company
from compass.models.task import Task
from compass.schemas.tasks import TaskCreate, TaskOut, TaskUpdate

router = APIRouter()


async def _get_task(db: AsyncSession, company: Company, task_id: UUID) -> Task:
    task = await db.get(Task, task_id)
    if task is None or task.company_id != company.id:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get("", response_model=list[TaskOut], status_code=200)
async def list_tasks(
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
):
    """Tasks for a company, newest first."""
    rows = (
        await db.execute(
            select(Task).where(Task.company_id == company.id).order_by(Task.created_at.desc())
        )
    ).scalars().all()
    return [TaskOut.model_validate(t) for t in rows]


@router.post("", response_model=TaskOut, status_code=201)
async def create_task(
    payload: TaskCreate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> TaskOut:
    task = Task(company_id=company.id, **payload.model_dump())
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return TaskOut.model_validate(task)


@router.patch("/{task_id}", response_model=TaskOut, status_code=200)
async def update_task(
    task_id: UUID,
    payload: TaskUpdate,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> TaskOut:
    """
    Partial update of a task.

    **Errors:** 400 (null title/status/priority), 404 (task not found)
    """
    task = await _get_task(db, company, task_id)
    changes = payload.model_dump(exclude_unset=True)
    for required in ("title", "status", "priority"):
        if required in changes and changes[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} cannot be null")

    for field, value in changes.items():
        setattr(task, field, value)
    await db.commit()
    await db.refresh(task)
    return TaskOut.model_validate(task)


@router.delete("/{task_id}", status_code=200)
async def delete_task(
    task_id: UUID,
    company: Company = Depends(get_owned_company),
    db: AsyncSession = Depends(get_db),
) -> dict:
    task = await _get_task(db, company, task_id)
    await db.delete(task)
    await db.commit()
    return {"status": "deleted"}
