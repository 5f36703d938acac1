from portal.db import db
from portal.db.models.vm import WorkloadState
from datetime import datetime, timezone


class K8sCluster(db.Model):
    __tablename__ = 'k8s_cluster'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    master_name = db.Column(db.String(32), unique=True, nullable=False)
    resources = db.Column(db.String(16), nullable=False)
    public = db.Column(db.Boolean, nullable=False, default=False)
    region = db.Column(db.String(64), nullable=True)
    state = db.Column(db.String(32), nullable=False, default=WorkloadState.IN_PROGRESS.value)
    request_id = db.Column(db.String(64), nullable=True)

    node_id = db.Column(db.Integer, nullable=True)
    contract_id = db.Column(db.Integer, nullable=True)
    network_contract_id = db.Column(db.Integer, nullable=True)
    public_ip = db.Column(db.String(64), nullable=True)
    ygg_ip = db.Column(db.String(64), nullable=True)
    mycelium_ip = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    workers = db.relationship(
        'K8sWorker',
        backref='cluster',
        cascade='all, delete-orphan',
        order_by='K8sWorker.position',
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'master': {
                'name': self.master_name,
                'resources': self.resources,
                'public': self.public,
                'public_ip': self.public_ip,
                'ygg_ip': self.ygg_ip,
                'mycelium_ip': self.mycelium_ip,
            },
            'workers': [w.to_dict() for w in self.workers],
            'region': self.region,
            'state': self.state,
            'contract_id': self.contract_id,
            'network_contract_id': self.network_contract_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<K8sCluster {self.master_name}>'


class K8sWorker(db.Model):
    __tablename__ = 'k8s_worker'

    id = db.Column(db.Integer, primary_key=True)
    cluster_id = db.Column(db.Integer, db.ForeignKey('k8s_cluster.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    name = db.Column(db.String(32), unique=True, nullable=False)
    resources = db.Column(db.String(16), nullable=False)
    ygg_ip = db.Column(db.String(64), nullable=True)
    mycelium_ip = db.Column(db.String(64), nullable=True)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'resources': self.resources,
            'ygg_ip': self.ygg_ip,
            'mycelium_ip': self.mycelium_ip,
        }

    def __repr__(self):
        return f'<K8sWorker {self.name}>'
