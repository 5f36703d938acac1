from portal.db import db
from datetime import datetime, timezone


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(128), unique=True, nullable=False)
    ssh_key = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def has_ssh_key(self) -> bool:
        return bool(self.ssh_key and self.ssh_key.strip())

    def __repr__(self):
        return f'<User {self.email}>'
