import functools
import logging
from contextlib import contextmanager

from django.conf import settings
from django.db import transaction
from django.db.utils import InterfaceError, OperationalError

from sync_utils.distributed_lock.exceptions import LockStoreUnavailable, LockUsageError


LOG = logging.getLogger(__name__)


@contextmanager
def store_operation(operation, lock_key='*'):
    """
    Turns connectivity errors from the database driver into LockStoreUnavailable so that
    callers can tell "the store is down" apart from "somebody else holds the lock"
    """
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        LOG.error('Lock store error during {0} of {1}: {2}'.format(operation, lock_key, e))
        raise LockStoreUnavailable(lock_key, operation) from e


def requires_autocommit(operation, keyed=True):
    """
    Decorator for LockStore methods that write to the lock table. The write has to commit
    on its own: a claim made inside an outer transaction.atomic() block is invisible to other
    processes until that block commits, and meanwhile any other acquirer of the same key
    blocks on the unique index instead of getting an immediate answer.
    Usage:
        class LockStore(object):
            @requires_autocommit('release')
            def delete_if_owner(self, lock_key, lock_id):
                ...
    The check has to open the connection, so it runs inside store_operation and an
    unreachable database surfaces as LockStoreUnavailable. With keyed the first argument
    of the method is reported as the lock key.
    Test suites that wrap every test in a transaction can turn the check off by setting
    DISTRIBUTED_LOCK_REQUIRE_AUTOCOMMIT to False in the Django settings.
    """

    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            check_enabled = getattr(settings, 'DISTRIBUTED_LOCK_REQUIRE_AUTOCOMMIT', True)
            if check_enabled:
                lock_key = args[0] if keyed and args else '*'
                with store_operation(operation, lock_key):
                    in_atomic_block = _is_in_atomic_block(self.using)
                if in_atomic_block:
                    raise LockUsageError(
                        '{0} must not be called within a database transaction.'.format(method.__name__)
                    )

            return method(self, *args, **kwargs)

        return wrapper

    return decorator


def _is_in_atomic_block(using):
    return not transaction.get_autocommit(using=using)
