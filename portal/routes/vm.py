from flask import Blueprint, jsonify, request

from portal.exceptions import ValidationError
from portal.middleware.auth import requires_auth
from portal.services.messages import WorkloadKind
from portal.services.registry import services
from portal.services.user_service import UserService
from portal.services.workload_service import WorkloadService

vm_bp = Blueprint('vm', __name__)


@vm_bp.route('/', methods=['POST'])
@requires_auth
def deploy_vm():
    """Enqueue a vm deployment"""
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    resources = data.get('resources')

    if not all([name, resources]):
        raise ValidationError("Missing required fields", "MISSING_REQUIRED_FIELDS")

    vm = services().intake.enqueue_vm(
        request.user['user_id'],
        name,
        resources,
        data.get('public', False)
    )

    return jsonify({
        'message': 'request is being deployed',
        'request_id': vm.request_id,
        'vm': vm.to_dict()
    }), 201


@vm_bp.route('/', methods=['GET'])
@requires_auth
def list_vms():
    user = UserService.get_user_by_id(request.user['user_id'])
    vms = WorkloadService.list_vms(user.id)
    return jsonify({'vms': [vm.to_dict() for vm in vms]}), 200


@vm_bp.route('/<int:vm_id>', methods=['GET'])
@requires_auth
def get_vm(vm_id):
    vm = WorkloadService.get_vm(request.user['user_id'], vm_id)
    return jsonify({'vm': vm.to_dict()}), 200


@vm_bp.route('/<int:vm_id>', methods=['DELETE'])
@requires_auth
def delete_vm(vm_id):
    """Cancel the vm contracts on the grid and forget the vm"""
    vm = WorkloadService.get_vm(request.user['user_id'], vm_id)
    services().cancellation.cancel(vm.contract_id, vm.network_contract_id, WorkloadKind.VM, vm.name)
    WorkloadService.delete(vm)
    return jsonify({'message': 'VM is deleted successfully'}), 200


@vm_bp.route('/', methods=['DELETE'])
@requires_auth
def delete_all_vms():
    user = UserService.get_user_by_id(request.user['user_id'])
    deleted = []
    for vm in WorkloadService.created_vms(user.id):
        services().cancellation.cancel(vm.contract_id, vm.network_contract_id, WorkloadKind.VM, vm.name)
        deleted.append(vm.name)
        WorkloadService.delete(vm)

    return jsonify({'message': 'All VMs are deleted successfully', 'deleted': deleted}), 200
