from __future__ import annotations
from typing import List, TYPE_CHECKING

from .results import EventsSummary
from ..change_tracker import ChangeTracker
from ..exceptions import SyncCancelledError
from ..sis_data_models import (ClassifiedEvent, SectionEvent, SisEvent,
                               SkippedEvent, StudentEvent, TeacherEvent,
                               TermEvent, classify)

if TYPE_CHECKING:
    from .context import SyncContext
    from .roster_synchronizer import RosterSynchronizer


class EventProcessor(object):

    """
    Applies a batch of SIS change events to a school, routing each to
    the delegate of its entity type. Events are applied in the order
    given; the cursor in the returned summary is the id of the last
    event seen, skipped or not.

    Events that cannot be routed are counted as skipped. An event that
    fails is logged and counted; the batch carries on.
    """

    def __init__(self, synchronizer: RosterSynchronizer):
        self.sync = synchronizer
        self.logger = self.sync.logger
        self.routes = {
            StudentEvent: ('student', synchronizer.sync_students),
            TeacherEvent: ('teacher', synchronizer.sync_teachers),
            SectionEvent: ('section', synchronizer.sync_sections),
            TermEvent: ('term', synchronizer.sync_terms)
        }

    def process_events(self, context: SyncContext, events: List[SisEvent],
                       sync_id: int, tracker: ChangeTracker) -> EventsSummary:
        summary = EventsSummary()
        context.result.events_summary = summary
        total = len(events)
        for i, event in enumerate(events, start=1):
            context.check_cancelled()
            summary.total_events_processed += 1
            summary.last_event_id = event.id

            classified = classify(event)
            if isinstance(classified, SkippedEvent):
                self.logger.debug(f'Skipping event {event.id} '
                                  f'({event.type}): {classified.reason}.')
                summary.events_skipped += 1
                continue

            mark = tracker.mark()
            try:
                self.route(context, classified, sync_id, tracker)
            except SyncCancelledError:
                raise
            except Exception:
                self.logger.exception(f'Failed to apply event {event.id} '
                                      f'({event.type}) for school '
                                      f'{context.school.id}.')
                context.rollback()
                tracker.discard_since(mark)
                summary.events_failed += 1
                continue

            kind, _ = self.routes[type(classified)]
            summary.record(kind, classified.action)
            if i % 10 == 0 or i == total:
                context.report(int(100 * i / total),
                               f'Processed {i}/{total} events')

        tracker.save_changes()
        self.logger.info(f'School {context.school.id}: '
                         + summary.to_display_string())
        return summary

    def route(self, context: SyncContext, classified: ClassifiedEvent,
              sync_id: int, tracker: ChangeTracker) -> bool:
        _, delegate = self.routes[type(classified)]
        result = context.result
        prefix = delegate.result_prefix

        if classified.action == 'deleted':
            return delegate.handle_delete(context, classified.external_id,
                                          sync_id, tracker)

        result.increment(prefix, 'processed')
        changed = delegate.upsert(context, classified.record, sync_id,
                                  tracker)
        if changed:
            result.increment(prefix, 'updated')
        if isinstance(classified, SectionEvent):
            delegate.record_event_received(context, classified.external_id)
        return changed
