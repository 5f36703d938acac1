from sqlalchemy.exc import SQLAlchemyError

from portal.db import db
from portal.db.models import User
from portal.exceptions import StoreUnavailable, UserNotFound


class UserService:
    @staticmethod
    def get_user_by_id(user_id: int) -> User:
        """
        Get a user by their ID.
        Raises UserNotFound if there is no such user.
        """
        try:
            user = db.session.get(User, user_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to load user") from e
        if not user:
            raise UserNotFound()
        return user
