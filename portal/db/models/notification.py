from portal.db import db
from datetime import datetime, timezone


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    # one notification per deployment request
    request_id = db.Column(db.String(64), unique=True, nullable=False)
    msg = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    delivered = db.Column(db.Boolean, nullable=False, default=False)
    seen = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'msg': self.msg,
            'type': self.type,
            'seen': self.seen,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Notification {self.request_id}>'
