import logging
import time

from sync_utils.distributed_lock.constants import (
    WECHAT_PUBLISHED_SYNC_LOCK_PREFIX,
    WECHAT_SYNC_LOCK_PREFIX,
)
from sync_utils.distributed_lock.manager import LockManager


LOG = logging.getLogger(__name__)


class _Skipped(object):
    def __repr__(self):
        return 'SKIPPED'


# Returned by run_exclusive when the work did not run because the lock was held
SKIPPED = _Skipped()


def account_lock_key(prefix, account_id):
    """
    Builds the per-account lock key of a sync job, e.g. wechat_sync_<account_id>
    """
    return '{0}{1}'.format(prefix, account_id)


def wechat_sync_lock_key(account_id):
    return account_lock_key(WECHAT_SYNC_LOCK_PREFIX, account_id)


def wechat_published_sync_lock_key(account_id):
    return account_lock_key(WECHAT_PUBLISHED_SYNC_LOCK_PREFIX, account_id)


class LockClient(object):
    """
    What sync jobs use to run exclusively per account. Usage:

        client = LockClient()
        if not client.try_acquire('wechat_sync_42', 1800):
            return
        try:
            sync()
        finally:
            client.release('wechat_sync_42')

    or just client.run_exclusive('wechat_sync_42', sync, ttl=1800).
    """

    def __init__(self, manager=None):
        self._manager = manager if manager is not None else LockManager()

    @property
    def manager(self):
        return self._manager

    def try_acquire(self, name, ttl=None):
        return self._manager.acquire(name, ttl_seconds=ttl)

    def release(self, name):
        self._manager.release(name)

    def is_held(self, name):
        return self._manager.is_locked(name)

    def try_acquire_with_retry(self, name, ttl=None, max_retries=3, delay=1.0, backoff=2.0):
        """
        Polls for the lock with a bounded number of retries, waiting delay seconds after
        the first failure and multiplying the wait by backoff after each further one.
        :return: True if the lock was acquired within the retries
        """
        if max_retries < 0:
            raise ValueError('max_retries must not be negative')

        wait = delay
        for attempt in range(max_retries + 1):
            if self.try_acquire(name, ttl=ttl):
                return True

            if attempt < max_retries:
                LOG.info('Lock {0} busy, retrying in {1}s ({2}/{3})'.format(name, wait, attempt + 1, max_retries))
                time.sleep(wait)
                wait *= backoff

        LOG.info('Gave up on lock {0} after {1} retries'.format(name, max_retries))
        return False

    def run_exclusive(self, name, func, *args, ttl=None, bypass=False, **kwargs):
        """
        Runs func while holding the lock, or skips it if the lock is held elsewhere.
        With bypass the lock is not taken at all, which gives up mutual exclusion and is
        only meant for manual runs.
        ttl and bypass are taken by the lock, every other argument is passed on to func.
        :return: What func returns, or SKIPPED
        """
        func_name = getattr(func, '__name__', repr(func))

        if bypass:
            LOG.warning('Bypassing lock {0}, running {1} without mutual exclusion'.format(name, func_name))
            return func(*args, **kwargs)

        if not self.try_acquire(name, ttl=ttl):
            LOG.info('Skipping {0}, lock {1} is held'.format(func_name, name))
            return SKIPPED

        try:
            return func(*args, **kwargs)
        finally:
            self.release(name)


class LockContext(object):
    """
    Context manager form of run_exclusive. The body always executes, so check should_run:

        with LockContext(wechat_sync_lock_key(account_id), ttl=1800) as lock:
            if not lock.should_run:
                return
            sync()
    """

    def __init__(self, name, ttl=None, bypass=False, client=None):
        self._name = name
        self._ttl = ttl
        self._bypass = bypass
        self._client = client if client is not None else LockClient()
        self._acquired = False
        self._bypassed = False

    @property
    def name(self):
        return self._name

    @property
    def acquired(self):
        return self._acquired

    @property
    def bypassed(self):
        return self._bypassed

    @property
    def should_run(self):
        return self._acquired or self._bypassed

    def __enter__(self):
        if self._bypass:
            LOG.warning('Bypassing lock {0} without mutual exclusion'.format(self._name))
            self._bypassed = True
            return self

        self._acquired = self._client.try_acquire(self._name, ttl=self._ttl)
        return self

    def __exit__(self, *args, **kwargs):
        if self._acquired:
            self._client.release(self._name)
            self._acquired = False
