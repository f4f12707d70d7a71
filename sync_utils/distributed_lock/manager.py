import logging
from datetime import timedelta
from uuid import uuid4

from django.conf import settings
from django.utils import timezone

from sync_utils.distributed_lock.constants import (
    DEFAULT_CLEANUP_GRACE_PERIOD_SECONDS,
    DEFAULT_TTL_SECONDS,
    MAX_LOCK_KEY_LENGTH,
)
from sync_utils.distributed_lock.store import LockStore


LOG = logging.getLogger(__name__)


def get_default_ttl():
    return getattr(settings, 'DISTRIBUTED_LOCK_DEFAULT_TTL', DEFAULT_TTL_SECONDS)


def get_cleanup_grace_period():
    return getattr(settings, 'DISTRIBUTED_LOCK_CLEANUP_GRACE_PERIOD', DEFAULT_CLEANUP_GRACE_PERIOD_SECONDS)


def as_timedelta(seconds):
    if isinstance(seconds, timedelta):
        return seconds
    return timedelta(seconds=seconds)


class LockManager(object):
    """
    Acquire, release and inspect named locks kept in the lock table.

    acquire() is a single non-blocking attempt: it claims the key with one conditional upsert
    and then reads the row back, and only reports success if the row carries the lock id it
    just wrote. Whether the holder is expired is always computed from expire_time at read
    time; no state flag is stored.

    The manager remembers the lock id it issued for each key so that release() and extend()
    can prove ownership. Two managers are two independent holders, even in one process.

    Database failures raise LockStoreUnavailable and are never reported as a lock being
    free or held.
    """

    def __init__(self, store=None):
        self._store = store if store is not None else LockStore()

        # lock_key -> lock_id of the acquisitions made through this manager
        self._lock_ids = {}

    @property
    def store(self):
        return self._store

    def generate_lock_id(self):
        return uuid4().hex

    def lock_id_for(self, lock_key):
        """
        :return: The lock id this manager was issued for lock_key, or None
        """
        return self._lock_ids.get(lock_key)

    def acquire(self, lock_key, ttl_seconds=None):
        """
        Tries once to take the lock
        :param lock_key: The name of the resource to lock
        :param ttl_seconds: How long the lock binds if it is never released
        :return: True if this manager now holds the lock
        """
        self._check_lock_key(lock_key)
        ttl = self._check_ttl(get_default_ttl() if ttl_seconds is None else ttl_seconds)

        lock_id = self.generate_lock_id()
        now = timezone.now()
        expire_time = now + ttl

        LOG.info('Trying to acquire lock: {0}'.format(lock_key))
        self._store.upsert_if_absent_or_expired(lock_key, lock_id, expire_time, now=now)

        # A concurrent takeover of the same expired row may also have been written, so
        # only the lock id that is actually stored wins
        record = self._store.read(lock_key)
        acquired = record is not None and record.lock_id == lock_id and record.is_valid()

        if acquired:
            self._lock_ids[lock_key] = lock_id
            LOG.info('Successfully acquired lock: {0} until {1}'.format(lock_key, expire_time))
        elif record is None:  # pragma: no cover
            LOG.info('Lock {0} was released while acquiring it'.format(lock_key))
        else:
            LOG.info('Lock {0} is held by {1} until {2}'.format(lock_key, record.lock_id, record.expire_time))

        return acquired

    def release(self, lock_key, lock_id=None):
        """
        Releases the lock if lock_id still owns it. Defaults to the lock id this manager
        was issued for the key.
        :return: False if the lock was already released, expired or taken over
        """
        if lock_id is None:
            lock_id = self._lock_ids.get(lock_key)

        if lock_id is None:
            LOG.warning('No lock id known to release lock: {0}'.format(lock_key))
            return False

        released = self._store.delete_if_owner(lock_key, lock_id)

        if self._lock_ids.get(lock_key) == lock_id:
            del self._lock_ids[lock_key]

        if released:
            LOG.info('Released lock: {0}'.format(lock_key))
        else:
            LOG.warning('Lock {0} is no longer owned by {1}, nothing released'.format(lock_key, lock_id))

        return released

    def is_locked(self, lock_key):
        """
        :return: True if lock_key has a row that has not expired yet
        """
        record = self._store.read(lock_key)
        return record is not None and record.is_valid()

    def extend(self, lock_key, ttl_seconds, lock_id=None):
        """
        Moves the expire_time of a lock this caller still holds to now + ttl_seconds.
        Long running work calls this before its lock expires. A lock that already expired
        cannot be extended, it has to be acquired again.
        :return: True if the lock was extended
        """
        ttl = self._check_ttl(ttl_seconds)

        if lock_id is None:
            lock_id = self._lock_ids.get(lock_key)

        if lock_id is None:
            LOG.warning('No lock id known to extend lock: {0}'.format(lock_key))
            return False

        now = timezone.now()
        extended = self._store.extend_if_owner(lock_key, lock_id, now + ttl, now=now)

        if extended:
            LOG.info('Extended lock {0} by {1}'.format(lock_key, ttl))
        else:
            LOG.warning('Could not extend lock {0}, it expired or is held by someone else'.format(lock_key))

        return extended

    def clean_expired(self, grace_period=None):
        """
        Deletes rows whose expire_time is older than now - grace_period. This is meant to be
        run periodically from a scheduled task, never from acquire().
        :param grace_period: Seconds or a timedelta
        :return: The number of rows deleted
        """
        if grace_period is None:
            grace_period = get_cleanup_grace_period()
        grace_period = as_timedelta(grace_period)
        if grace_period < timedelta(0):
            raise ValueError('grace_period must not be negative')

        deleted = self._store.delete_expired(timezone.now() - grace_period)
        LOG.info('Cleaned {0} expired lock(s)'.format(deleted))

        return deleted

    def force_release(self, lock_key):
        """
        Deletes the lock whoever holds it. For operators clearing a stuck lock.
        :return: The number of rows deleted
        """
        deleted = self._store.delete_key(lock_key)
        self._lock_ids.pop(lock_key, None)
        LOG.warning('Force released {0} lock(s) for key {1}'.format(deleted, lock_key))
        return deleted

    def force_release_prefix(self, prefix):
        """
        Deletes every lock whose key starts with prefix, e.g. all wechat_sync_ locks
        :return: The number of rows deleted
        """
        if not prefix:
            raise ValueError('A prefix is required, use force_release_all to delete every lock')

        deleted = self._store.delete_with_prefix(prefix)
        for lock_key in [key for key in self._lock_ids if key.startswith(prefix)]:
            del self._lock_ids[lock_key]
        LOG.warning('Force released {0} lock(s) with prefix {1}'.format(deleted, prefix))
        return deleted

    def force_release_all(self):
        deleted = self._store.delete_all()
        self._lock_ids.clear()
        LOG.warning('Force released all {0} lock(s)'.format(deleted))
        return deleted

    def list_locks(self):
        """
        :return: Every lock row, newest first, expired ones included
        """
        return self._store.all_records()

    def _check_lock_key(self, lock_key):
        if not lock_key:
            raise ValueError('A lock key is required')
        if len(lock_key) > MAX_LOCK_KEY_LENGTH:
            raise ValueError('Lock key is longer than {0} characters: {1}'.format(MAX_LOCK_KEY_LENGTH, lock_key))

    def _check_ttl(self, ttl_seconds):
        ttl = as_timedelta(ttl_seconds)
        if ttl <= timedelta(0):
            raise ValueError('ttl must be positive, got {0}'.format(ttl_seconds))
        return ttl
