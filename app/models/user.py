from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base
from app.models.ids import new_object_id

class User(Base):
    __tablename__ = "users"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(24), unique=True, index=True, nullable=False, default=new_object_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    date_created = Column(DateTime, nullable=False, server_default=func.now())


class UserPendingTask(Base):
    """One entry of a user's pendingTasks list. Part of the user document."""
    __tablename__ = "user_pending_tasks"
    __table_args__ = (
        UniqueConstraint('user_id', 'task_id', name='_user_pending_task_uc'),
    )

    seq = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(24), nullable=False, index=True)
    task_id = Column(String(24), nullable=False, index=True)
