"""
This module coordinates the synchronization of the SIS and the school
databases. The main class is `RosterSynchronizer`, found in the
`roster_synchronizer` submodule. This main class makes use of five
"delegate" classes, found in the `delegates` submodule. Each of these
classes subclasses the `SyncDelegate` interface and contains the logic
for synchronizing a specific kind of object:

    - `StudentDelegate` manages the student roster.
    - `TeacherDelegate` manages the teaching staff.
    - `TermDelegate` manages the academic terms.
    - `SectionDelegate` manages sections along with their teacher and
        student enrollments.
    - `AdminDelegate` manages school administrator accounts in the
        catalog.

Incremental syncs go through `EventProcessor`, which routes each SIS
event to the matching delegate. Outcomes are reported as
`SyncResult` objects per school and `SyncSummary` objects per batch.
"""


from .context import SyncContext
from .event_processor import EventProcessor
from .results import EventsSummary, SyncProgress, SyncResult, SyncSummary
from .roster_synchronizer import RosterSynchronizer
