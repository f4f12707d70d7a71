from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from sync_utils.distributed_lock.manager import LockManager


class Command(BaseCommand):
    help = 'Inspect and maintain distributed locks: status, clean, release, release-prefix'

    def add_arguments(self, parser):
        parser.add_argument(
            'action',
            choices=['status', 'clean', 'release', 'release-prefix'],
            help='status lists every lock, clean deletes expired ones, release and release-prefix '
                 'delete locks whoever holds them',
        )
        parser.add_argument(
            '--lock-key', '-k',
            help='The lock key to release',
        )
        parser.add_argument(
            '--prefix', '-p',
            help='Release every lock whose key starts with this prefix, e.g. wechat_sync_',
        )
        parser.add_argument(
            '--grace-seconds',
            type=int,
            default=None,
            help='Only clean locks that expired more than this many seconds ago',
        )
        parser.add_argument(
            '--force', '-f',
            action='store_true',
            help='With clean, delete every lock including live ones',
        )

    def handle(self, *args, **options):
        manager = LockManager()
        action = options['action']

        if action == 'status':
            self._status(manager)
        elif action == 'clean':
            self._clean(manager, options['grace_seconds'], options['force'])
        elif action == 'release':
            self._release(manager, options['lock_key'])
        else:
            self._release_prefix(manager, options['prefix'])

    def _status(self, manager):
        locks = manager.list_locks()
        if not locks:
            self.stdout.write(self.style.SUCCESS('No lock records'))
            return

        now = timezone.now()
        active_count = 0
        for lock in locks:
            expired = lock.is_expired(now=now)
            if not expired:
                active_count += 1
            self.stdout.write('{0}  {1}  expires {2}  created {3}  {4}'.format(
                lock.lock_key,
                lock.lock_id,
                lock.expire_time,
                lock.created_at,
                'EXPIRED' if expired else 'ACTIVE',
            ))

        self.stdout.write('Total: {0} lock(s) (active: {1}, expired: {2})'.format(
            len(locks), active_count, len(locks) - active_count
        ))

    def _clean(self, manager, grace_seconds, force):
        if force:
            deleted = manager.force_release_all()
            self.stdout.write(self.style.WARNING('Force deleted {0} lock(s)'.format(deleted)))
        else:
            try:
                deleted = manager.clean_expired(grace_period=grace_seconds)
            except ValueError as e:
                raise CommandError(str(e))
            self.stdout.write(self.style.SUCCESS('Cleaned {0} expired lock(s)'.format(deleted)))

    def _release(self, manager, lock_key):
        if not lock_key:
            raise CommandError('release requires --lock-key')

        deleted = manager.force_release(lock_key)
        if deleted:
            self.stdout.write(self.style.SUCCESS('Released lock: {0}'.format(lock_key)))
        else:
            self.stdout.write(self.style.WARNING('No lock found for key: {0}'.format(lock_key)))

    def _release_prefix(self, manager, prefix):
        if not prefix:
            raise CommandError('release-prefix requires --prefix')

        deleted = manager.force_release_prefix(prefix)
        if deleted:
            self.stdout.write(self.style.SUCCESS('Released {0} lock(s) with prefix {1}'.format(deleted, prefix)))
        else:
            self.stdout.write(self.style.WARNING('No locks found with prefix: {0}'.format(prefix)))
