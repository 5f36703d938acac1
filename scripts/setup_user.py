#!/usr/bin/env python3
import os
import sys
from datetime import datetime, timezone
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portal.app import create_app
from portal.db import db
from portal.db.models import User
from portal.exceptions import ServiceException
from portal.middleware.auth import AuthService
from portal.services.registry import services


def setup_user(email: str, ssh_key: str, vms: int, ips: int) -> User:
    """
    Create a user, or update an existing one, with an SSH key and a quota.
    """
    user = User.query.filter_by(email=email).first()
    if user is None:
        user = User(email=email, created_at=datetime.now(timezone.utc))
        db.session.add(user)

    user.ssh_key = ssh_key
    user.updated_at = datetime.now(timezone.utc)
    db.session.commit()

    services().quota.set_quota(user.id, vms, ips)
    return user


def main():
    if len(sys.argv) != 5:
        print("Usage: python setup_user.py <email> <ssh_key> <vms> <ips>")
        sys.exit(1)

    email, ssh_key = sys.argv[1], sys.argv[2]
    try:
        vms, ips = int(sys.argv[3]), int(sys.argv[4])
    except ValueError:
        print("Error: <vms> and <ips> must be integers")
        sys.exit(1)

    app = create_app()
    with app.app_context():
        try:
            user = setup_user(email, ssh_key, vms, ips)
        except ServiceException as e:
            db.session.rollback()
            print(f"Error: {e}")
            sys.exit(1)

        token = AuthService.create_access_token(user, app.config['JWT_SECRET_KEY'])
        print(f"""
User ready!
User: {user.email} (ID: {user.id})
Quota: vms={vms} public_ips={ips}
Token: {token}
        """)


if __name__ == '__main__':
    main()
