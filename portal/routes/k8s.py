from flask import Blueprint, jsonify, request

from portal.exceptions import ValidationError
from portal.middleware.auth import requires_auth
from portal.services.messages import WorkloadKind
from portal.services.registry import services
from portal.services.user_service import UserService
from portal.services.workload_service import WorkloadService

k8s_bp = Blueprint('k8s', __name__)


@k8s_bp.route('/', methods=['POST'])
@requires_auth
def deploy_k8s():
    """Enqueue a kubernetes cluster deployment"""
    data = request.get_json(silent=True) or {}
    master_name = data.get('master_name')
    resources = data.get('resources')

    if not all([master_name, resources]):
        raise ValidationError("Missing required fields", "MISSING_REQUIRED_FIELDS")

    cluster = services().intake.enqueue_k8s(
        request.user['user_id'],
        master_name,
        resources,
        public=data.get('public', False),
        region=data.get('region'),
        workers=data.get('workers', [])
    )

    return jsonify({
        'message': 'request is being deployed',
        'request_id': cluster.request_id,
        'cluster': cluster.to_dict()
    }), 201


@k8s_bp.route('/', methods=['GET'])
@requires_auth
def list_k8s():
    user = UserService.get_user_by_id(request.user['user_id'])
    clusters = WorkloadService.list_k8s(user.id)
    return jsonify({'clusters': [c.to_dict() for c in clusters]}), 200


@k8s_bp.route('/<int:cluster_id>', methods=['GET'])
@requires_auth
def get_k8s(cluster_id):
    cluster = WorkloadService.get_k8s(request.user['user_id'], cluster_id)
    return jsonify({'cluster': cluster.to_dict()}), 200


@k8s_bp.route('/<int:cluster_id>', methods=['DELETE'])
@requires_auth
def delete_k8s(cluster_id):
    cluster = WorkloadService.get_k8s(request.user['user_id'], cluster_id)
    services().cancellation.cancel(
        cluster.contract_id, cluster.network_contract_id, WorkloadKind.K8S, cluster.master_name
    )
    WorkloadService.delete(cluster)
    return jsonify({'message': 'Kubernetes cluster is deleted successfully'}), 200


@k8s_bp.route('/', methods=['DELETE'])
@requires_auth
def delete_all_k8s():
    user = UserService.get_user_by_id(request.user['user_id'])
    deleted = []
    for cluster in WorkloadService.created_k8s(user.id):
        services().cancellation.cancel(
            cluster.contract_id, cluster.network_contract_id, WorkloadKind.K8S, cluster.master_name
        )
        deleted.append(cluster.master_name)
        WorkloadService.delete(cluster)

    return jsonify({'message': 'All Kubernetes clusters are deleted successfully', 'deleted': deleted}), 200
