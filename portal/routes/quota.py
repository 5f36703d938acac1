from flask import Blueprint, jsonify, request

from portal.middleware.auth import requires_auth
from portal.services.registry import services
from portal.services.user_service import UserService

quota_bp = Blueprint('quota', __name__)


@quota_bp.route('/', methods=['GET'])
@requires_auth
def get_quota():
    """Remaining vm and public ip slots of the caller"""
    user = UserService.get_user_by_id(request.user['user_id'])
    quota = services().quota.read(user.id)
    return jsonify({
        'quota': {
            'vms': quota.vms,
            'public_ips': quota.public_ips
        }
    }), 200
