from portal.db import db
from datetime import datetime, timezone


class Quota(db.Model):
    """Reserved vm and public ip slots of one user"""
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), primary_key=True)
    vms = db.Column(db.Integer, nullable=False, default=0)
    public_ips = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.CheckConstraint('vms >= 0', name='quota_vms_non_negative'),
        db.CheckConstraint('public_ips >= 0', name='quota_public_ips_non_negative'),
    )

    def __repr__(self):
        return f'<Quota user={self.user_id} vms={self.vms} ips={self.public_ips}>'


class QuotaRefund(db.Model):
    """One row per refunded request, so a request is never refunded twice"""
    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.String(64), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    vms = db.Column(db.Integer, nullable=False)
    public_ips = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f'<QuotaRefund {self.request_id}>'
