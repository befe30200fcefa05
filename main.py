#!/usr/bin/env python3
from datetime import timedelta
from logging.config import dictConfig
from typing import Union
import argparse
import logging
import os
import json

from roster_synchronizer import (ApiConfig, AuthConfig,
                                 EnvironmentCredentialStore,
                                 RosterSynchronizer, SisApiClient,
                                 SisSession, SyncConfig,
                                 SyncScheduleService, SyncSummary,
                                 TokenManager, exceptions)
from roster_synchronizer.database import (CatalogDatabase,
                                          SchoolDatabaseFactory)
from roster_synchronizer.health import (AuthenticationHealthCheck,
                                        EventsHealthCheck, HealthCache,
                                        HealthStatus,
                                        OrphanDetectionHealthCheck)
from roster_synchronizer.local_time import LocalTimeService
from roster_synchronizer.lock_service import SyncLockService


def setup_logging(config_file: str = None, log_dir: str = None,
                  log_level: Union[str, int] = None) -> dict:
    if config_file is None:
        config_file = os.path.join(os.getcwd(), 'logging_config.json')

    if log_level is None:
        log_level = os.environ.get('LOGLEVEL', logging.INFO)

    with open(config_file, 'r') as f:
        config = json.load(f)

    for obj_type in 'loggers', 'handlers':
        obj: dict
        for obj in config[obj_type].values():
            if obj['level'] in ('NOTSET', logging.NOTSET):
                # Use environment variable if level is not set
                obj['level'] = log_level
            if (obj_type == 'handlers'
                    and log_dir is not None
                    and 'filename' in obj.keys()):
                obj['filename'] = os.path.join(log_dir, obj['filename'])

    return config


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Synchronize school rosters from the SIS.'
    )
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument('--district', type=int, metavar='ID',
                       help='sync every active school of one district')
    scope.add_argument('--school', type=int, metavar='ID',
                       help='sync a single school')
    scope.add_argument('--scheduled', action='store_true',
                       help='sync the districts whose schedules are due')
    scope.add_argument('--health', action='store_true',
                       help='run the health checks instead of a sync')
    parser.add_argument('--force-full', action='store_true',
                        help='run full syncs even where a cursor exists')
    parser.add_argument('--initiated-by', default='CommandLine',
                        help='recorded on the sync locks')
    return parser.parse_args(argv)


def build_synchronizer(sync_config: SyncConfig) -> RosterSynchronizer:
    auth_config = AuthConfig.from_env()
    api_config = ApiConfig.from_env()
    credentials = EnvironmentCredentialStore(auth_config.secret_prefix)

    catalog = CatalogDatabase.from_credentials(credentials)
    token_manager = TokenManager(credentials, auth_config)
    session = SisSession(token_manager, timeout=api_config.timeout_seconds)
    return RosterSynchronizer(
        catalog=catalog,
        school_databases=SchoolDatabaseFactory(credentials),
        client=SisApiClient(session, api_config),
        lock_service=SyncLockService(catalog),
        config=sync_config,
        time_service=LocalTimeService(sync_config.default_time_zone)
    )


def run_scheduled(sync_agent: RosterSynchronizer, sync_config: SyncConfig,
                  args: argparse.Namespace) -> SyncSummary:
    logger = logging.getLogger(__name__)
    schedules = SyncScheduleService(sync_agent.catalog,
                                    sync_agent.time_service,
                                    sync_config.schedule_window_minutes)
    summary = SyncSummary()
    due = schedules.get_due_schedules()
    if not due:
        logger.info('No sync schedules are due.')
    for schedule in due:
        schedules.mark_triggered(schedule.id)
        district_summary = sync_agent.sync_district(
            schedule.district_id, args.force_full,
            initiated_by=f'Schedule {schedule.id}'
        )
        for result in district_summary.school_results:
            summary.add(result)
    return summary


def run_health(sync_agent: RosterSynchronizer,
               sync_config: SyncConfig) -> int:
    logger = logging.getLogger(__name__)
    cache = HealthCache(timedelta(minutes=sync_config.health_cache_minutes))
    checks = (
        ('Events', EventsHealthCheck(sync_agent.client, sync_agent.catalog,
                                     cache)),
        ('Authentication', AuthenticationHealthCheck(
            sync_agent.client.session.token_manager
        )),
        ('Orphan detection', OrphanDetectionHealthCheck(
            sync_agent.catalog, sync_agent.school_databases, cache,
            sync_config.stale_threshold_days
        ))
    )
    unhealthy = 0
    for name, check in checks:
        result = check.check()
        level = logging.INFO if result.is_healthy else logging.WARNING
        logger.log(level, f'{name}: {result.status} - {result.description}')
        if result.status == HealthStatus.UNHEALTHY:
            unhealthy += 1
    return 0 if unhealthy == 0 else 1


def main(argv=None) -> int:
    logging_config = setup_logging(log_dir=os.environ.get('LOGDIR'))
    dictConfig(logging_config)

    logger = logging.getLogger(__name__)
    args = parse_args(argv)
    try:
        sync_config = SyncConfig.from_env()
        sync_agent = build_synchronizer(sync_config)
        if args.health:
            return run_health(sync_agent, sync_config)
        sync_agent.lock_service.cleanup_expired()

        if args.scheduled:
            summary = run_scheduled(sync_agent, sync_config, args)
        elif args.school is not None:
            summary = SyncSummary()
            summary.add(sync_agent.sync_school(
                args.school, args.force_full,
                initiated_by=args.initiated_by
            ))
        elif args.district is not None:
            summary = sync_agent.sync_district(
                args.district, args.force_full,
                initiated_by=args.initiated_by
            )
        else:
            summary = sync_agent.sync_all_districts(
                args.force_full, initiated_by=args.initiated_by
            )
    except exceptions.SyncError:
        logger.exception('Could not finish sync.')
        return 1

    for result in summary.school_results:
        if not result.success:
            logger.error(f'School {result.school_id} '
                         f'({result.school_name}) failed: '
                         f'{result.error_message}')
    logger.info(f'{summary.successful_schools}/{summary.total_schools} '
                f'school(s) synced successfully.')
    return 0 if summary.failed_schools == 0 else 1


if __name__ == '__main__':
    raise SystemExit(main())
