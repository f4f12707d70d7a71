from django.db import models
from django.utils import timezone
from manager_utils import ManagerUtilsManager, ManagerUtilsQuerySet


class DistributedLockQuerySet(ManagerUtilsQuerySet):
    def live(self, now=None):
        if now is None:
            now = timezone.now()
        return self.filter(expire_time__gt=now)

    def expired(self, before=None):
        if before is None:
            before = timezone.now()
        return self.filter(expire_time__lt=before)

    def with_prefix(self, prefix):
        return self.filter(lock_key__startswith=prefix)


class DistributedLockManager(ManagerUtilsManager):
    def get_queryset(self):
        return DistributedLockQuerySet(self.model, using=self._db)

    def live(self, now=None):
        return self.get_queryset().live(now=now)

    def expired(self, before=None):
        return self.get_queryset().expired(before=before)

    def with_prefix(self, prefix):
        return self.get_queryset().with_prefix(prefix)


class DistributedLock(models.Model):
    """
    One row per lock key that is held, or was held and has not been cleaned up yet.
    Rows are claimed with a single conditional upsert, so the unique lock_key is what
    keeps two holders from ever owning the same key. A row whose expire_time has passed
    is abandoned and may be overwritten by the next acquirer.
    """

    # The logical name of the protected resource, e.g. wechat_sync_<account_id>
    lock_key = models.CharField(max_length=255, unique=True)

    # Opaque token of the current holder, used to prove ownership on release
    lock_id = models.CharField(max_length=255)

    # After this instant the lock no longer binds anyone
    expire_time = models.DateTimeField(db_index=True)

    # When the current holder generation was written
    created_at = models.DateTimeField(default=timezone.now)

    objects = DistributedLockManager()

    class Meta:
        db_table = 'lock_records'

    def __str__(self):
        return self.lock_key

    def is_expired(self, now=None):
        if now is None:
            now = timezone.now()
        return self.expire_time <= now

    def is_valid(self, now=None):
        return not self.is_expired(now=now)
