from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from livescreen.database import get_db
from livescreen.models.enums import ModuleType
from livescreen.models.subtest import Subtest
from livescreen.schemas.subtest import SubtestListItem, SubtestOut

router = APIRouter(prefix="/subtests", tags=["Subtests"])


@router.get("", response_model=List[SubtestListItem])
def list_subtests(
    module_type: Optional[ModuleType] = None,
    grade: Optional[str] = None,
    db: Session = Depends(get_db),
):
    query = db.query(Subtest)
    if module_type is not None:
        query = query.filter(Subtest.module_type == module_type)
    if grade:
        query = query.filter(Subtest.grade == grade)
    return query.order_by(Subtest.order_index, Subtest.name).all()


@router.get("/{subtest_id}", response_model=SubtestOut)
def get_subtest(subtest_id: str, db: Session = Depends(get_db)):
    subtest = db.get(Subtest, subtest_id)
    if not subtest:
        raise HTTPException(status_code=404, detail="Subtest not found")
    return subtest
