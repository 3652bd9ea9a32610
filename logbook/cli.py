"""
Flask CLI commands.

Usage:
    flask --app logbook.app init-db
    flask --app logbook.app check-admins
"""

import click
from flask import Flask
from flask.cli import with_appcontext

from logbook.services.container import get_services


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create all tables if they don't exist."""
    services = get_services()
    services.db.create_all()
    click.echo('Database initialized.')


@click.command('check-admins')
@with_appcontext
def check_admins_command():
    """List users holding the ADMIN role and the configured allow-lists."""
    services = get_services()
    admins = services.roles.list_admins()

    if not admins:
        click.echo('No ADMIN users in the database.')
    for user in admins:
        click.echo(f'{user.id}  {user.external_id}  {user.email or "-"}  {user.display_name}')

    admin_config = services.config.admin
    click.echo(f'ADMIN_CLERK_IDS: {", ".join(admin_config.external_ids) or "(none)"}')
    click.echo(f'ADMIN_EMAILS: {", ".join(admin_config.emails) or "(none)"}')


def register_commands(app: Flask) -> None:
    app.cli.add_command(init_db_command)
    app.cli.add_command(check_admins_command)
