"""
SQLAlchemy models for a single school's database. Roster records are
soft-deleted through `deleted_at` and never removed. Workshops belong
to a downstream scheduling system; the synchronizer only reads them to
know which sections must not be deleted.
"""
from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer,
                        String, UniqueConstraint)
from sqlalchemy.orm import declarative_base

from ..utils import utcnow

SchoolBase = declarative_base()


class Student(SchoolBase):
    __tablename__ = 'students'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False, default='')
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False, default='')
    grade = Column(Integer, nullable=True)
    grade_level = Column(String(20), nullable=True)
    student_number = Column(String(100), nullable=True)
    state_student_id = Column(String(100), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


class Teacher(SchoolBase):
    __tablename__ = 'teachers'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False, default='')
    last_name = Column(String(100), nullable=False, default='')
    full_name = Column(String(200), nullable=True)
    email = Column(String(300), nullable=True)
    teacher_number = Column(String(100), nullable=True)
    staff_number = Column(String(100), nullable=True)
    title = Column(String(100), nullable=True)
    user_name = Column(String(200), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


class Term(SchoolBase):
    __tablename__ = 'terms'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_manual = Column(Boolean, default=False, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


class Section(SchoolBase):
    __tablename__ = 'sections'

    id = Column(Integer, primary_key=True)
    external_id = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False, default='')
    period = Column(String(50), nullable=True)
    subject = Column(String(100), nullable=True)
    term_id = Column(String(100), nullable=True)
    last_event_received_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)


class TeacherSection(SchoolBase):
    __tablename__ = 'teacher_sections'
    __table_args__ = (UniqueConstraint('teacher_id', 'section_id'),)

    id = Column(Integer, primary_key=True)
    teacher_id = Column(Integer, ForeignKey('teachers.id'), nullable=False)
    section_id = Column(Integer, ForeignKey('sections.id'), nullable=False,
                        index=True)
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class StudentSection(SchoolBase):
    __tablename__ = 'student_sections'
    __table_args__ = (UniqueConstraint('student_id', 'section_id'),)

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey('students.id'), nullable=False)
    section_id = Column(Integer, ForeignKey('sections.id'), nullable=False,
                        index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Workshop(SchoolBase):
    __tablename__ = 'workshops'

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class WorkshopSection(SchoolBase):
    __tablename__ = 'workshop_sections'
    __table_args__ = (UniqueConstraint('workshop_id', 'section_id'),)

    id = Column(Integer, primary_key=True)
    workshop_id = Column(Integer, ForeignKey('workshops.id'), nullable=False)
    section_id = Column(Integer, ForeignKey('sections.id'), nullable=False,
                        index=True)
