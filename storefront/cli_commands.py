"""
Flask CLI commands.

Commands:
- flask init-db: Create the database schema
- flask create-admin: Create a user with the ADMIN role
"""

import click
from storefront.database import get_session, create_schema
from storefront.exceptions import StorefrontError
from storefront.models import UserRole


def init_cli_commands(app):
    """Register CLI commands with Flask app."""
    
    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables that do not exist yet."""
        create_schema()
        click.echo(click.style('Database schema created.', fg='green'))
    
    @app.cli.command('create-admin')
    @click.option('--email', prompt=True, help='Admin email address')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Admin password')
    @click.option('--full-name', default=None, help='Display name')
    def create_admin(email, password, full_name):
        """Create a new administrator account."""
        from storefront.services.auth_service import register_user
        
        try:
            admin = register_user(
                get_session(),
                {'email': email, 'password': password, 'full_name': full_name},
                role=UserRole.ADMIN
            )
        except StorefrontError as e:
            details = getattr(e, 'errors', None)
            click.echo(click.style(f'Error creating administrator: {e.message}', fg='red'))
            for detail in details or ():
                click.echo(f'   - {detail}')
            raise SystemExit(1)
        
        click.echo(click.style('Administrator created.', fg='green', bold=True))
        click.echo(f'   Email: {admin.email}')
        click.echo(f'   ID: {admin.id}')
