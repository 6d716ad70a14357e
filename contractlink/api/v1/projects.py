from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from contractlink.api.deps import get_db, require_role
from contractlink.common.enums import ProjectCategory, ProjectStatus, UserRole
from contractlink.common.exceptions import NotFoundError
from contractlink.common.pagination import PaginatedResponse, PaginationParams, paginate
from contractlink.db.models.project import Project
from contractlink.db.models.user import User

router = APIRouter(tags=["Projects"])


# ---------- Schemas ----------


class ProjectCreateRequest(BaseModel):
    title: str = Field(min_length=5)
    description: str = Field(min_length=20)
    category: ProjectCategory
    location: str = Field(min_length=1)
    budget_min: Decimal = Field(gt=0)
    budget_max: Decimal = Field(gt=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    duration: str | None = None

    @model_validator(mode="after")
    def _check_budget_range(self):
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        return self


class ProjectResponse(BaseModel):
    id: int
    company_id: int
    title: str
    description: str
    category: str
    location: str
    budget_min: Decimal
    budget_max: Decimal
    start_date: datetime | None
    end_date: datetime | None
    duration: str | None
    status: str
    created_at: str

    @classmethod
    def from_orm_instance(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            company_id=project.company_id,
            title=project.title,
            description=project.description,
            category=project.category,
            location=project.location,
            budget_min=project.budget_min,
            budget_max=project.budget_max,
            start_date=project.start_date,
            end_date=project.end_date,
            duration=project.duration,
            status=project.status,
            created_at=project.created_at.isoformat(),
        )


class ProjectListResponse(PaginatedResponse[ProjectResponse]):
    pass


# ---------- Endpoints ----------


@router.get("/projects", response_model=ProjectListResponse)
async def list_projects(
    category: ProjectCategory | None = Query(None),
    status: ProjectStatus | None = Query(None),
    location: str | None = Query(None),
    params: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    query = select(Project)
    if category is not None:
        query = query.where(Project.category == category.value)
    if status is not None:
        query = query.where(Project.status == status.value)
    if location:
        query = query.where(Project.location.ilike(f"%{location}%"))
    query = query.order_by(Project.created_at.desc(), Project.id.desc())

    items, total = await paginate(db, query, params, Project)
    return ProjectListResponse(
        items=[ProjectResponse.from_orm_instance(p) for p in items],
        total=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    body: ProjectCreateRequest,
    current_user: User = Depends(require_role(UserRole.COMPANY, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    project = Project(
        company_id=current_user.id,
        title=body.title,
        description=body.description,
        category=body.category.value,
        location=body.location,
        budget_min=body.budget_min,
        budget_max=body.budget_max,
        start_date=body.start_date,
        end_date=body.end_date,
        duration=body.duration,
        status=ProjectStatus.OPEN.value,
    )
    db.add(project)
    await db.flush()
    await db.refresh(project)
    return ProjectResponse.from_orm_instance(project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: int, db: AsyncSession = Depends(get_db)):
    project = await get_project_or_404(project_id, db)
    return ProjectResponse.from_orm_instance(project)


@router.get("/companies/{company_id}/projects", response_model=list[ProjectResponse])
async def list_company_projects(company_id: int, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Project)
        .where(Project.company_id == company_id)
        .order_by(Project.created_at.desc(), Project.id.desc())
    )
    return [ProjectResponse.from_orm_instance(p) for p in result.scalars().all()]


async def get_project_or_404(project_id: int, db: AsyncSession) -> Project:
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project", project_id)
    return project
