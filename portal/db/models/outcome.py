from portal.db import db
from datetime import datetime, timezone
from enum import Enum

class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"

class DeploymentOutcome(db.Model):
    """Terminal result of one deployment request"""
    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(64), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    name = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False)

    contract_id = db.Column(db.Integer, nullable=True)
    network_contract_id = db.Column(db.Integer, nullable=True)
    public_ip = db.Column(db.String(64), nullable=True)
    internal_ip = db.Column(db.String(64), nullable=True)

    error_kind = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED.value

    def __repr__(self):
        return f'<DeploymentOutcome {self.request_id} {self.status}>'
