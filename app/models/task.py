from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base
from app.models.ids import new_object_id

UNASSIGNED = "unassigned"


class Task(Base):
    __tablename__ = "tasks"

    # seq keeps insertion order, which is the default listing order
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(24), unique=True, index=True, nullable=False, default=new_object_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    deadline = Column(DateTime, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    # Plain string reference, no foreign key: users and tasks are separate documents
    assigned_user = Column(String(24), nullable=False, default="", index=True)
    assigned_user_name = Column(String(255), nullable=False, default=UNASSIGNED)
    date_created = Column(DateTime, nullable=False, server_default=func.now())
