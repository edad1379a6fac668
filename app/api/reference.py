from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.api.auth import get_current_user
from app.models import Area, Department, User
from app.schemas import Area as AreaSchema, Department as DepartmentSchema

router = APIRouter()


@router.get("/areas", response_model=List[AreaSchema])
async def list_areas(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(Area).order_by(Area.name).all()


@router.get("/departments", response_model=List[DepartmentSchema])
async def list_departments(
    include_inactive: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Departments an issue can be handed to"""
    query = db.query(Department)
    if not include_inactive:
        query = query.filter(Department.is_active == True)
    return query.order_by(Department.name).all()
