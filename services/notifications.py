"""Due-date notification job, triggered from outside the app (cron, CLI)."""
from __future__ import annotations

import datetime
from typing import Callable, Optional

from services.scanner import DueDateScanner, DueNotice, DueReport

Notifier = Callable[[str, DueNotice], None]


def _log_notifier(app) -> Notifier:
    def notify(kind: str, notice: DueNotice) -> None:
        if kind == 'overdue':
            app.logger.info(
                '[due_check] overdue: user=%s (%s) "%s" at %s, due %s (%d days late)',
                notice.username, notice.user_id, notice.title, notice.library_name,
                notice.due_date, -notice.days_until_due,
            )
        else:
            app.logger.info(
                '[due_check] due soon: user=%s (%s) "%s" at %s, due %s (in %d days)',
                notice.username, notice.user_id, notice.title, notice.library_name,
                notice.due_date, notice.days_until_due,
            )

    return notify


def run_due_check_job(app, today: Optional[datetime.date] = None, notify: Optional[Notifier] = None) -> DueReport:
    """Scan open loans and hand each overdue / due-soon one to ``notify``.

    Delivery is the notifier's business; by default notices are only logged.
    A failing notifier is logged and does not stop the remaining notices.
    """
    with app.app_context():
        scanner = DueDateScanner(due_soon_days=app.config.get('DUE_SOON_DAYS', 5))
        report = scanner.scan(today)
        notify = notify or _log_notifier(app)
        failures = 0
        for kind, notices in (('overdue', report.overdue), ('due_soon', report.due_soon)):
            for notice in notices:
                try:
                    notify(kind, notice)
                except Exception as exc:
                    failures += 1
                    app.logger.exception('[due_check] notifying loan %s failed: %s', notice.record_id, exc)
        app.logger.info(
            '[due_check] date=%s overdue=%d due_soon=%d failed=%d',
            report.scanned_on, len(report.overdue), len(report.due_soon), failures,
        )
        return report
