from datetime import datetime, timedelta, timezone
from functools import wraps

import jwt
from flask import current_app, request

from portal.exceptions import AuthenticationError
from portal.db.models import User

JWT_ALGORITHM = 'HS256'
JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=24)


class AuthService:
    @staticmethod
    def create_access_token(user: User, secret: str, expires: timedelta = JWT_ACCESS_TOKEN_EXPIRES) -> str:
        payload = {
            'user_id': user.id,
            'email': user.email,
            'exp': datetime.now(timezone.utc) + expires
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    @staticmethod
    def verify_token(token: str, secret: str) -> dict:
        try:
            return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired", "TOKEN_EXPIRED")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token", "INVALID_TOKEN")


def requires_auth(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        token = None
        auth_header = request.headers.get('Authorization')

        if auth_header:
            try:
                token = auth_header.split(" ")[1]  # Bearer <token>
            except IndexError:
                raise AuthenticationError("Invalid token format", "INVALID_TOKEN_FORMAT")

        if not token:
            raise AuthenticationError("Token is missing", "TOKEN_MISSING")

        payload = AuthService.verify_token(token, current_app.config['JWT_SECRET_KEY'])
        if 'user_id' not in payload:
            raise AuthenticationError("Invalid token", "INVALID_TOKEN")

        request.user = payload
        return f(*args, **kwargs)

    return decorated
