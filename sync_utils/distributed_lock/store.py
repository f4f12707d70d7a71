from django.db import DEFAULT_DB_ALIAS, connections
from django.utils import timezone

from sync_utils.distributed_lock.decorators import requires_autocommit, store_operation
from sync_utils.distributed_lock.exceptions import LockUsageError
from sync_utils.distributed_lock.models import DistributedLock


# The conflict clause only overwrites an expired holder, in the same statement as the insert
ON_CONFLICT_UPSERT = """
INSERT INTO {table}(
        lock_key,
        lock_id,
        expire_time,
        created_at
    )
    VALUES (%s, %s, %s, %s)
    ON CONFLICT (lock_key) DO UPDATE
    SET
        lock_id = excluded.lock_id,
        expire_time = excluded.expire_time,
        created_at = excluded.created_at
    WHERE
        {table}.expire_time <= %s
"""

# MySQL applies the assignments left to right, so expire_time has to be compared before it is overwritten
ON_DUPLICATE_KEY_UPSERT = """
INSERT INTO {table}(
        lock_key,
        lock_id,
        expire_time,
        created_at
    )
    VALUES (%s, %s, %s, %s)
    ON DUPLICATE KEY UPDATE
        lock_id = IF(expire_time <= %s, VALUES(lock_id), lock_id),
        created_at = IF(expire_time <= %s, VALUES(created_at), created_at),
        expire_time = IF(expire_time <= %s, VALUES(expire_time), expire_time)
"""


class LockStore(object):
    """
    Storage for lock rows. Every mutation is a single statement so that the database's
    row-level atomicity is the only thing arbitrating between processes.
    Supported backends are PostgreSQL, SQLite and MySQL.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self._using = using

    @property
    def using(self):
        return self._using

    @property
    def connection(self):
        return connections[self._using]

    @property
    def records(self):
        return DistributedLock.objects.using(self._using)

    def build_upsert(self, lock_key, lock_id, expire_time, now):
        """
        :return: The upsert query for this database's vendor and its params
        """
        connection = self.connection
        table = connection.ops.quote_name(DistributedLock._meta.db_table)
        adapt = connection.ops.adapt_datetimefield_value
        values = [lock_key, lock_id, adapt(expire_time), adapt(now)]

        if connection.vendor in ('postgresql', 'sqlite'):
            return ON_CONFLICT_UPSERT.format(table=table), values + [adapt(now)]
        elif connection.vendor == 'mysql':
            return ON_DUPLICATE_KEY_UPSERT.format(table=table), values + [adapt(now)] * 3
        else:
            raise LockUsageError('Distributed locks are not supported on {0}'.format(connection.vendor))

    @requires_autocommit('upsert')
    def upsert_if_absent_or_expired(self, lock_key, lock_id, expire_time, now=None):
        """
        Inserts the row for lock_key, or overwrites it if its expire_time has passed.
        A live row is left alone.
        :return: True if a row was written
        """
        if now is None:
            now = timezone.now()

        query, params = self.build_upsert(lock_key, lock_id, expire_time, now)

        with store_operation('upsert', lock_key):
            with self.connection.cursor() as cursor:
                cursor.execute(query, params)
                written = cursor.rowcount > 0

            # Django connects to MySQL with FOUND_ROWS, so an untouched live row also counts as affected
            if self.connection.vendor == 'mysql':
                written = self.records.filter(lock_key=lock_key, lock_id=lock_id).exists()

        return written

    def read(self, lock_key):
        """
        :return: The lock row for lock_key or None
        """
        with store_operation('read', lock_key):
            return self.records.filter(lock_key=lock_key).first()

    @requires_autocommit('release')
    def delete_if_owner(self, lock_key, lock_id):
        """
        Deletes the row only if lock_id is still the current holder
        :return: True if a row was deleted
        """
        with store_operation('release', lock_key):
            deleted, _ = self.records.filter(lock_key=lock_key, lock_id=lock_id).delete()
        return deleted > 0

    @requires_autocommit('extend')
    def extend_if_owner(self, lock_key, lock_id, expire_time, now=None):
        """
        Moves expire_time forward while lock_id still holds a live lock
        :return: True if the row was updated
        """
        if now is None:
            now = timezone.now()

        with store_operation('extend', lock_key):
            updated = self.records.filter(
                lock_key=lock_key,
                lock_id=lock_id,
                expire_time__gt=now,
            ).update(expire_time=expire_time)
        return updated > 0

    @requires_autocommit('cleanup', keyed=False)
    def delete_expired(self, older_than):
        """
        Deletes every row whose expire_time is before older_than
        :return: The number of deleted rows
        """
        with store_operation('cleanup'):
            deleted, _ = self.records.expired(before=older_than).delete()
        return deleted

    @requires_autocommit('force release')
    def delete_key(self, lock_key):
        with store_operation('force release', lock_key):
            deleted, _ = self.records.filter(lock_key=lock_key).delete()
        return deleted

    @requires_autocommit('force release')
    def delete_with_prefix(self, prefix):
        with store_operation('force release', '{0}*'.format(prefix)):
            deleted, _ = self.records.with_prefix(prefix).delete()
        return deleted

    @requires_autocommit('force release', keyed=False)
    def delete_all(self):
        with store_operation('force release'):
            deleted, _ = self.records.all().delete()
        return deleted

    def all_records(self):
        with store_operation('status'):
            return list(self.records.order_by('-created_at', 'lock_key'))
