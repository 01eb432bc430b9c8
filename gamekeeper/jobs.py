# /gamekeeper/gamekeeper/jobs.py

from flask import current_app

from . import db
from .clients import get_bool_setting
from .downloads import reconcile_downloads
from .errors import AdapterUnavailable
from .library import scan_library
from .updates import check_all_updates

UPDATE_CHECK_INTERVALS = {'hourly': 1, 'daily': 24, 'weekly': 24 * 7}


def reconcile_downloads_job(app):
    """Scheduled job to sync grabbed releases with the download client."""
    with app.app_context():
        try:
            stats = reconcile_downloads()
            if stats['completed'] or stats['failed']:
                app.logger.info(f"Scheduler: reconcile pass finished {stats}")
        finally:
            # The next run must get a fresh session.
            db.session.remove()


def update_check_job(app):
    """
    Scheduled job that looks for new versions, DLC and better releases of
    every monitored, downloaded game.
    """
    with app.app_context():
        try:
            if not get_bool_setting('update_check_enabled', True):
                app.logger.info("Scheduler: update checks are disabled, skipping.")
                return
            app.logger.info("Scheduler: Running update check for the library.")
            check_all_updates()
        finally:
            db.session.remove()


def library_scan_job(app):
    with app.app_context():
        try:
            app.logger.info("Scheduler: Running library scan.")
            scan_library(auto=True)
        except AdapterUnavailable as e:
            app.logger.warning(f"Scheduler: library scan skipped: {e}")
        finally:
            db.session.remove()


def update_check_hours(schedule):
    return UPDATE_CHECK_INTERVALS.get((schedule or 'daily').lower(), 24)


def register_jobs(app, scheduler):
    job_defaults = {'replace_existing': True, 'args': [app], 'max_instances': 1, 'coalesce': True}
    scheduler.add_job(func=reconcile_downloads_job, trigger="interval",
                      seconds=app.config['RECONCILE_INTERVAL_SECONDS'], id="reconcile_downloads_job", **job_defaults)
    scheduler.add_job(func=update_check_job, trigger="interval",
                      hours=update_check_hours(app.config['UPDATE_CHECK_SCHEDULE']), id="update_check_job",
                      **job_defaults)
    scheduler.add_job(func=library_scan_job, trigger="interval",
                      hours=app.config['LIBRARY_SCAN_HOURS'], id="library_scan_job", **job_defaults)


def register_cli_commands(app):
    """A function to register our custom commands with Flask."""

    @app.cli.command('reconcile')
    def reconcile_command():
        """Runs one download reconciliation pass."""
        stats = reconcile_downloads()
        current_app.logger.info(f"--- Reconcile finished: {stats} ---")
        print(stats)

    @app.cli.command('check-updates')
    def check_updates_command():
        """Checks every monitored, downloaded game for updates."""
        result = check_all_updates()
        print(f"--- Checked {result['checked']} games, found {result['updatesFound']} updates ---")

    @app.cli.command('scan-library')
    def scan_library_command():
        """Scans the monitored libraries and auto-matches new folders."""
        stats = scan_library(auto=True)
        print(f"--- Library scan finished: {stats} ---")
