import logging
from datetime import datetime, timezone

from redis import Redis
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from portal.db import db
from portal.db.models import Quota, QuotaRefund
from portal.exceptions import InsufficientQuota, StoreUnavailable, ValidationError
from portal.utils.redis_lock import RedisLock

logger = logging.getLogger(__name__)


class QuotaService:
    """
    Per-user ledger of vm and public ip slots.
    Every mutation holds the user's Redis lock and a row lock, so concurrent
    debits for one user are serialized and never leave a negative balance.
    """

    def __init__(self, redis_client: Redis, lock_timeout: float = 10):
        self.redis = redis_client
        self.lock_timeout = lock_timeout

    def _lock(self, user_id: int) -> RedisLock:
        return RedisLock(self.redis, f"quota:{user_id}", expire_seconds=30, timeout=self.lock_timeout)

    @staticmethod
    def _check_amounts(vms: int, ips: int) -> None:
        if vms < 0 or ips < 0:
            raise ValidationError("Quota amounts must not be negative", "INVALID_QUOTA_AMOUNT")

    @staticmethod
    def _locked_row(user_id: int) -> Quota:
        return Quota.query.with_for_update().filter_by(user_id=user_id).first()

    def read(self, user_id: int) -> Quota:
        """Current reservation, an empty one if the user never got quota"""
        try:
            quota = db.session.get(Quota, user_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to read quota") from e
        return quota or Quota(user_id=user_id, vms=0, public_ips=0)

    def debit(self, user_id: int, vms: int, ips: int) -> Quota:
        """
        Take vm and public ip slots from the user.
        Raises InsufficientQuota without touching the balance if either would go negative.
        """
        self._check_amounts(vms, ips)

        with self._lock(user_id):
            try:
                quota = self._locked_row(user_id)
                available_vms = quota.vms if quota else 0
                available_ips = quota.public_ips if quota else 0

                if available_vms < vms:
                    raise InsufficientQuota('vm')
                if available_ips < ips:
                    raise InsufficientQuota('ip')

                if quota is None:
                    # nothing was requested from an empty ledger
                    db.session.rollback()
                    return self.read(user_id)

                quota.vms -= vms
                quota.public_ips -= ips
                quota.updated_at = datetime.now(timezone.utc)
                db.session.commit()
                logger.info("Debited user %s: vms=%s ips=%s", user_id, vms, ips)
                return quota

            except InsufficientQuota:
                db.session.rollback()
                raise
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreUnavailable("Failed to debit quota") from e

    def credit(self, user_id: int, vms: int, ips: int) -> Quota:
        """Give vm and public ip slots back to the user"""
        self._check_amounts(vms, ips)

        with self._lock(user_id):
            try:
                quota = self._add(user_id, vms, ips)
                db.session.commit()
                logger.info("Credited user %s: vms=%s ips=%s", user_id, vms, ips)
                return quota
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreUnavailable("Failed to credit quota") from e

    def refund(self, request_id: str, user_id: int, vms: int, ips: int) -> bool:
        """
        Credit the quota reserved by a failed request.
        A request is refunded at most once, later calls return False.
        """
        self._check_amounts(vms, ips)

        with self._lock(user_id):
            try:
                if QuotaRefund.query.filter_by(request_id=request_id).first():
                    logger.info("Request %s was already refunded", request_id)
                    return False

                db.session.add(QuotaRefund(
                    request_id=request_id,
                    user_id=user_id,
                    vms=vms,
                    public_ips=ips,
                    created_at=datetime.now(timezone.utc)
                ))
                self._add(user_id, vms, ips)
                db.session.commit()
                logger.info("Refunded request %s for user %s: vms=%s ips=%s", request_id, user_id, vms, ips)
                return True

            except IntegrityError:
                # another process refunded the same request first
                db.session.rollback()
                return False
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreUnavailable("Failed to refund quota") from e

    def set_quota(self, user_id: int, vms: int, ips: int) -> Quota:
        """Overwrite the user's reservation, used by operators"""
        self._check_amounts(vms, ips)

        with self._lock(user_id):
            try:
                quota = self._locked_row(user_id)
                if quota is None:
                    quota = Quota(user_id=user_id)
                    db.session.add(quota)
                quota.vms = vms
                quota.public_ips = ips
                quota.updated_at = datetime.now(timezone.utc)
                db.session.commit()
                return quota
            except SQLAlchemyError as e:
                db.session.rollback()
                raise StoreUnavailable("Failed to set quota") from e

    def _add(self, user_id: int, vms: int, ips: int) -> Quota:
        quota = self._locked_row(user_id)
        if quota is None:
            quota = Quota(user_id=user_id, vms=0, public_ips=0)
            db.session.add(quota)

        quota.vms += vms
        quota.public_ips += ips
        quota.updated_at = datetime.now(timezone.utc)
        return quota
