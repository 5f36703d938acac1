from portal.db import db
from datetime import datetime, timezone
from enum import Enum

class WorkloadState(Enum):
    IN_PROGRESS = "in_progress"
    CREATED = "created"

class VM(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    name = db.Column(db.String(32), unique=True, nullable=False)
    resources = db.Column(db.String(16), nullable=False)
    public = db.Column(db.Boolean, nullable=False, default=False)
    state = db.Column(db.String(32), nullable=False, default=WorkloadState.IN_PROGRESS.value)
    request_id = db.Column(db.String(64), nullable=True)

    cru = db.Column(db.Integer, nullable=False)
    mru = db.Column(db.Integer, nullable=False)  # MiB
    sru = db.Column(db.Integer, nullable=False)  # GiB

    node_id = db.Column(db.Integer, nullable=True)
    contract_id = db.Column(db.Integer, nullable=True)
    network_contract_id = db.Column(db.Integer, nullable=True)
    public_ip = db.Column(db.String(64), nullable=True)
    ygg_ip = db.Column(db.String(64), nullable=True)
    mycelium_ip = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'resources': self.resources,
            'public': self.public,
            'state': self.state,
            'cru': self.cru,
            'mru': self.mru,
            'sru': self.sru,
            'contract_id': self.contract_id,
            'network_contract_id': self.network_contract_id,
            'public_ip': self.public_ip,
            'ygg_ip': self.ygg_ip,
            'mycelium_ip': self.mycelium_ip,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<VM {self.name}>'
