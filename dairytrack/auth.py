from flask import request, jsonify

from .models import User, UserRole

MANAGER_ROLES = ('farm_owner', 'farm_manager')
ROLE_TYPES = ('farm_owner', 'farm_manager', 'worker', 'veterinarian')


def get_current_user():
    """Resolves the 'Authorization: Bearer <token>' header to a User, or None."""
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    if not token:
        return None
    return User.query.filter_by(api_token=token).first()


def get_user_role(user_id):
    """Returns the single UserRole row of a user, or None."""
    return UserRole.query.filter_by(user_id=user_id).first()


def require_farm_member(roles=None):
    """
    Runs the checks every farm-scoped handler starts with.
    Returns (user, role, error_response); error_response is None when the
    caller may proceed, otherwise a ready (json, status) tuple.
    """
    user = get_current_user()
    if not user:
        return None, None, (jsonify({'error': 'Unauthorized'}), 401)

    role = get_user_role(user.id)
    if not role or not role.farm_id:
        return user, role, (jsonify({'error': 'No farm associated with user'}), 400)

    if roles and role.role_type not in roles:
        return user, role, (jsonify({'error': 'Insufficient permissions'}), 403)

    return user, role, None


def require_farm_access(farm_id, roles=None):
    """Same as require_farm_member, and the caller must belong to farm_id."""
    user, role, error = require_farm_member(roles)
    if error:
        return user, role, error
    if role.farm_id != farm_id:
        return user, role, (jsonify({'error': 'Forbidden'}), 403)
    return user, role, None
