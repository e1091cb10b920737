# livescreen/models/student.py
from sqlalchemy import Column, String
from livescreen.database import Base


class Student(Base):
    """
    The person being assessed.
    Rows are written by the intake system; the core only reads the grade
    (default for ORF benchmarks).
    """
    __tablename__ = "students"

    id = Column(String, primary_key=True)
    full_name = Column(String, nullable=False)
    grade = Column(String, nullable=True)
