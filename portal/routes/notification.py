from flask import Blueprint, jsonify, request

from portal.middleware.auth import requires_auth
from portal.services.notification_service import NotificationService

notification_bp = Blueprint('notification', __name__)


@notification_bp.route('/', methods=['GET'])
@requires_auth
def list_notifications():
    notifications = NotificationService.list_notifications(request.user['user_id'])
    return jsonify({'notifications': [n.to_dict() for n in notifications]}), 200


@notification_bp.route('/<int:notification_id>/seen', methods=['PUT'])
@requires_auth
def mark_seen(notification_id):
    notification = NotificationService.mark_seen(request.user['user_id'], notification_id)
    return jsonify({'notification': notification.to_dict()}), 200
