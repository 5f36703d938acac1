from portal.db.models.user import User
from portal.db.models.quota import Quota, QuotaRefund
from portal.db.models.vm import VM
from portal.db.models.k8s import K8sCluster, K8sWorker
from portal.db.models.outcome import DeploymentOutcome
from portal.db.models.notification import Notification

__all__ = ['User', 'Quota', 'QuotaRefund', 'VM', 'K8sCluster', 'K8sWorker', 'DeploymentOutcome', 'Notification']
