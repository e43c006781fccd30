from __future__ import annotations

import datetime
import os

import click
from flask import Flask, g, jsonify, request

from config import BaseConfig, config_by_name
from models import db
from services.auth import admin_required, get_current_user, login_required
from services.borrowing import BorrowService, BorrowServiceError, retry_on_conflict
from services.notifications import run_due_check_job
from services.scanner import DueDateScanner


def _load_config(app: Flask, config_name: str | None, test_config: dict | None) -> None:
    resolved_name = config_name or os.environ.get('FLASK_CONFIG', 'development')
    config_cls = config_by_name.get(resolved_name, BaseConfig)
    app.config.from_object(config_cls)
    if test_config:
        app.config.update(test_config)


def create_app(config_name: str | None = None, test_config: dict | None = None):
    if isinstance(config_name, dict) and test_config is None:
        test_config = config_name
        config_name = None
    app = Flask(__name__)
    _load_config(app, config_name, test_config)
    db.init_app(app)
    borrow_service = BorrowService()

    def due_soon_days():
        return app.config.get('DUE_SOON_DAYS', 5)

    def due_report(find):
        raw_value = request.args.get('date')
        try:
            day = datetime.date.fromisoformat(raw_value) if raw_value else None
        except ValueError:
            return jsonify({'error': 'date must be YYYY-MM-DD', 'kind': 'invalid_request'}), 400
        return jsonify([n.to_dict() for n in find(day)])

    @app.before_request
    def bind_current_user():
        g.pop('_cached_user', None)
        g.current_user = get_current_user()

    @app.after_request
    def set_security_headers(response):
        response.headers.setdefault('X-Frame-Options', 'DENY')
        response.headers.setdefault('X-Content-Type-Options', 'nosniff')
        response.headers.setdefault('Referrer-Policy', 'no-referrer-when-downgrade')
        return response

    @app.errorhandler(BorrowServiceError)
    def handle_borrow_error(exc: BorrowServiceError):
        payload = {'error': str(exc), 'kind': exc.kind}
        limit = getattr(exc, 'limit', None)
        if limit is not None:
            payload['limit'] = limit.to_dict()
        return jsonify(payload), exc.status_code

    @app.route('/api/borrows', methods=['POST'])
    @login_required
    def api_borrow():
        data = request.get_json(silent=True) or {}
        try:
            copy_id = int(data.get('copy_id'))
        except (TypeError, ValueError):
            return jsonify({'error': 'copy_id is required', 'kind': 'invalid_request'}), 400
        user_id = g.current_user.id
        summary = retry_on_conflict(
            lambda: borrow_service.borrow(user_id=user_id, copy_id=copy_id),
            attempts=app.config.get('BORROW_MAX_RETRIES', 3),
        )
        return jsonify(summary.to_dict()), 201

    @app.route('/api/borrows/<int:record_id>/return', methods=['PUT'])
    @login_required
    def api_return(record_id: int):
        user_id = g.current_user.id
        summary = retry_on_conflict(
            lambda: borrow_service.return_loan(user_id=user_id, record_id=record_id),
            attempts=app.config.get('BORROW_MAX_RETRIES', 3),
        )
        return jsonify(summary.to_dict())

    @app.route('/api/borrows/current')
    @login_required
    def api_current_loans():
        records = borrow_service.current_loans(g.current_user.id)
        return jsonify([r.to_dict(due_soon_days=due_soon_days()) for r in records])

    @app.route('/api/borrows/history')
    @login_required
    def api_loan_history():
        records = borrow_service.loan_history(g.current_user.id)
        return jsonify([r.to_dict(due_soon_days=due_soon_days()) for r in records])

    @app.route('/api/borrows/limits')
    @login_required
    def api_borrow_limits():
        limits = borrow_service.borrow_limits(g.current_user.id)
        return jsonify({category.value: info.to_dict() for category, info in limits.items()})

    @app.route('/api/borrows/overdue')
    @admin_required
    def api_overdue():
        return due_report(DueDateScanner(due_soon_days()).overdue)

    @app.route('/api/borrows/due-soon')
    @admin_required
    def api_due_soon():
        return due_report(DueDateScanner(due_soon_days()).due_soon)

    @app.cli.command('scan-due')
    @click.option(
        '--date', 'day', type=click.DateTime(formats=['%Y-%m-%d']), default=None,
        help='Scan as of this date (YYYY-MM-DD).',
    )
    def scan_due_command(day):
        """Report overdue and soon-due loans."""
        report = run_due_check_job(app, today=day.date() if day else None)
        click.echo(f'overdue={len(report.overdue)} due_soon={len(report.due_soon)}')

    @app.cli.command('init-db')
    @click.option('--seed', is_flag=True, help='Also insert demo branches, titles and borrowers.')
    def init_db_command(seed):
        """Create the tables."""
        from db import seed_demo_data

        db.create_all()
        if seed:
            seed_demo_data()
        click.echo('Initialized database')

    return app


if __name__ == '__main__':
    application = create_app()
    with application.app_context():
        db.create_all()
    application.run(debug=True)
