"""
Persistence for the synchronizer. There are two kinds of database:

    - the catalog (`catalog` submodule), one per deployment, holding
      districts, schools and all sync bookkeeping
    - the school databases (`school` submodule), one per school,
      holding that school's roster

`connection` opens both kinds.
"""
from .catalog import (AuthSource, CatalogBase, ChangeType, District, EventsLog,
                      School, SyncChangeDetail, SyncHistory, SyncLock,
                      SyncSchedule, SyncStatus, SyncType, SyncWarning, User,
                      WarningType)
from .connection import CatalogDatabase, SchoolDatabaseFactory, session_scope
from .school import (SchoolBase, Section, Student, StudentSection, Teacher,
                     TeacherSection, Term, Workshop, WorkshopSection)
