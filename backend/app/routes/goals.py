from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from ..models import User, Goal
from ..schemas import Goal as GoalSchema, GoalCreate, GoalUpdate, GoalWithProgress
from ..auth import get_current_user
from ..bank_integration.metrics import goal_progress

router = APIRouter(prefix="/goals", tags=["goals"])


def _get_owned_goal(db: Session, goal_id: int, user: User) -> Goal:
    goal = db.query(Goal).filter(
        Goal.id == goal_id,
        Goal.user_id == user.id
    ).first()
    if not goal:
        raise HTTPException(status_code=404, detail="Goal not found")
    return goal


def _with_progress(goal: Goal) -> GoalWithProgress:
    progress = goal_progress(goal)
    return GoalWithProgress(
        **GoalSchema.model_validate(goal).model_dump(),
        progress=progress['progress'],
        remaining=progress['remaining'],
        timeRemaining=progress['time_remaining']
    )


@router.get("/", response_model=List[GoalWithProgress])
def list_goals(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Active goals with progress and time remaining"""
    goals = db.query(Goal).filter(
        Goal.user_id == current_user.id,
        Goal.is_active == True
    ).order_by(Goal.created_at.desc(), Goal.id.desc()).all()

    return [_with_progress(goal) for goal in goals]


@router.post("/", response_model=GoalSchema)
def create_goal(
    goal: GoalCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    db_goal = Goal(user_id=current_user.id, is_active=True, **goal.model_dump())
    db.add(db_goal)
    db.commit()
    db.refresh(db_goal)
    return db_goal


@router.put("/{goal_id}", response_model=GoalSchema)
def update_goal(
    goal_id: int,
    goal_update: GoalUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    goal = _get_owned_goal(db, goal_id, current_user)
    for field, value in goal_update.model_dump(exclude_unset=True).items():
        setattr(goal, field, value)

    db.commit()
    db.refresh(goal)
    return goal


@router.delete("/{goal_id}")
def delete_goal(
    goal_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    goal = _get_owned_goal(db, goal_id, current_user)
    goal.is_active = False
    db.commit()

    return {"message": "Goal deleted"}
