"""
This module contains class definitions for the "delegate" classes for
use in the `roster_synchronizer` parent module. Each delegate owns the
sync behavior of one entity type of a school's roster. There are five,
run during a full sync in the order listed:

`StudentDelegate` synchronizes students and reports grade changes to
the workshop tracker.

`TeacherDelegate` synchronizes teachers.

`TermDelegate` synchronizes terms, leaving manually entered terms
alone.

`SectionDelegate` synchronizes sections with their teacher and student
memberships, and protects workshop-linked sections from deletion.

`AdminDelegate` synchronizes school administrators into the catalog's
user accounts.

See the documentation for each class for more information about the
specifics of their routines.
"""
from .base_delegate import SyncDelegate
from .admin_delegate import AdminDelegate
from .section_delegate import SectionDelegate
from .student_delegate import StudentDelegate
from .teacher_delegate import TeacherDelegate
from .term_delegate import TermDelegate
