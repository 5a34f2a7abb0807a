# make_admin.py
# Usage: ADMIN_USERNAME=admin ADMIN_PASSWORD=... python make_admin.py

import os
import sys

from app import create_app
from extensions import db
from licensing.errors import LicensingError
from licensing.services import get_services
from models import Admin


def make_admin(username, password, app=None):
    """Create the admin account, or reset its password if it already exists."""
    app = app or create_app()
    with app.app_context():
        admin = Admin.query.filter_by(username=username).first()
        if admin:
            print(f"Found admin id={admin.id}, username={admin.username}. Resetting password...")
            admin.set_password(password)
            admin.is_active = True
            db.session.commit()
            return admin.id

        admin = get_services().accounts.create_admin(username, password)
        print(f"Created admin id={admin.id} with username={username}.")
        return admin.id


if __name__ == "__main__":
    username = os.getenv("ADMIN_USERNAME", "admin")
    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        sys.exit("ADMIN_PASSWORD must be set")
    try:
        make_admin(username, password)
    except LicensingError as exc:
        sys.exit(f"Could not create admin: {exc.message}")
