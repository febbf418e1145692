# campusvote/commands.py
# Operator commands: `flask create-admin`, `flask create-voter`, `flask generate-faq`

import click

from campusvote import db
from campusvote.database.models import Admin, Association, Voter
from campusvote.encryption.password_hashing import PasswordHashingService
from campusvote.exceptions import VotingError


def register_commands(app):
    pwhash = PasswordHashingService()

    @app.cli.command('create-admin')
    @click.option('--email', required=True)
    @click.option('--password', required=True)
    @click.option('--association', 'association_name', required=True, help='Association name; created if missing.')
    def create_admin(email, password, association_name):
        """Create an association administrator."""
        association = db.session.query(Association).filter_by(name=association_name).first()
        if association is None:
            association = Association(name=association_name)
            db.session.add(association)
            db.session.flush()
        try:
            hashpw = pwhash.hash_password(password)
        except ValueError as e:
            raise click.ClickException(str(e))
        admin = Admin(email=email.lower(), password_hash=hashpw, association_id=association.id)
        db.session.add(admin)
        db.session.commit()
        click.echo(f"Admin {admin.email} created for association {association.name} ({association.id}).")

    @app.cli.command('create-voter')
    @click.option('--association-id', required=True)
    @click.option('--student-id', required=True)
    @click.option('--first-name', required=True)
    @click.option('--last-name', required=True)
    @click.option('--email', required=True)
    def create_voter(association_id, student_id, first_name, last_name, email):
        """Register a voter and print their one-time password."""
        if db.session.get(Association, association_id) is None:
            raise click.ClickException('Association not found.')
        password = pwhash.generate_voter_password()
        voter = Voter(
            first_name=first_name,
            last_name=last_name,
            email=email,
            student_id=student_id,
            password_hash=pwhash.hash_password(password, enforce_policy=False),
            association_id=association_id,
        )
        db.session.add(voter)
        db.session.commit()
        click.echo(f"Voter {student_id} created.")
        click.echo(f"Plaintext password: {password}")

    @app.cli.command('generate-faq')
    @click.option('--election', 'election_id', default=None, help='Only this election.')
    @click.option('--force', is_flag=True, help='Delete and rebuild existing FAQ entries.')
    def generate_faq(election_id, force):
        """Build FAQ entries from indexed manifestos."""
        faq = app.extensions['campusvote'].faq
        if election_id:
            try:
                generated = faq.regenerate(election_id) if force else faq.generate(election_id)
            except VotingError as e:
                raise click.ClickException(e.message)
            click.echo(f"Generated {generated} FAQ entries for election {election_id}.")
            return
        counts = faq.generate_for_active_elections(force=force)
        if not counts:
            click.echo("No active elections with manifestos found.")
        for election, generated in counts.items():
            click.echo(f"Generated {generated} FAQ entries for election {election}.")
