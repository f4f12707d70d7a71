import datetime

from django.test import TestCase, override_settings
from django_dynamic_fixture import G
from freezegun import freeze_time
from mock import patch

from sync_utils.distributed_lock.exceptions import LockStoreUnavailable
from sync_utils.distributed_lock.manager import LockManager
from sync_utils.distributed_lock.models import DistributedLock


NOW = datetime.datetime(2017, 1, 1, 12)


class LockManagerScenarioTest(TestCase):

    def test_takeover_after_expiry(self):
        """
        A second caller is refused while the lock is live, takes it over once it expired, and the
        first caller can no longer release it
        """
        first = LockManager()
        second = LockManager()

        with freeze_time(NOW) as frozen_time:
            self.assertTrue(first.acquire('job_A', 60))
            first_lock_id = first.lock_id_for('job_A')

            self.assertFalse(second.acquire('job_A', 60))

            frozen_time.tick(datetime.timedelta(seconds=61))

            self.assertTrue(second.acquire('job_A', 60))
            self.assertNotEqual(second.lock_id_for('job_A'), first_lock_id)

            self.assertFalse(first.release('job_A', lock_id=first_lock_id))
            self.assertTrue(second.is_locked('job_A'))
            self.assertEqual(DistributedLock.objects.get(lock_key='job_A').lock_id, second.lock_id_for('job_A'))

    def test_release_then_reacquire(self):
        manager = LockManager()

        self.assertTrue(manager.acquire('job_B', 30))
        self.assertTrue(manager.release('job_B'))
        self.assertFalse(manager.is_locked('job_B'))
        self.assertTrue(manager.acquire('job_B', 30))


@freeze_time(NOW)
class LockManagerTest(TestCase):

    def setUp(self):
        super().setUp()
        self.manager = LockManager()

    def test_acquire_writes_row(self):
        self.assertTrue(self.manager.acquire('job', 90))

        lock = DistributedLock.objects.get(lock_key='job')
        self.assertEqual(lock.lock_id, self.manager.lock_id_for('job'))
        self.assertEqual(lock.expire_time, NOW + datetime.timedelta(seconds=90))

    @override_settings(DISTRIBUTED_LOCK_DEFAULT_TTL=120)
    def test_acquire_default_ttl(self):
        self.assertTrue(self.manager.acquire('job'))
        self.assertEqual(DistributedLock.objects.get(lock_key='job').expire_time, NOW + datetime.timedelta(seconds=120))

    def test_acquire_timedelta_ttl(self):
        self.assertTrue(self.manager.acquire('job', datetime.timedelta(minutes=5)))
        self.assertEqual(DistributedLock.objects.get(lock_key='job').expire_time, NOW + datetime.timedelta(minutes=5))

    def test_acquire_is_not_reentrant(self):
        self.assertTrue(self.manager.acquire('job', 60))
        lock_id = self.manager.lock_id_for('job')

        self.assertFalse(self.manager.acquire('job', 60))
        self.assertEqual(self.manager.lock_id_for('job'), lock_id)

    def test_only_one_of_many_acquires(self):
        managers = [LockManager() for _ in range(5)]

        results = [manager.acquire('job', 60) for manager in managers]

        self.assertEqual(results.count(True), 1)
        self.assertEqual(DistributedLock.objects.filter(lock_key='job').count(), 1)

    def test_different_keys_are_independent(self):
        self.assertTrue(self.manager.acquire('wechat_sync_1', 60))
        self.assertTrue(LockManager().acquire('wechat_sync_2', 60))

    def test_lock_ids_are_unique(self):
        self.assertNotEqual(self.manager.generate_lock_id(), self.manager.generate_lock_id())

    def test_acquire_lost_race(self):
        """
        If another caller's takeover is what ended up stored, acquire reports failure even though the
        upsert claimed to have written a row
        """
        G(DistributedLock, lock_key='job', lock_id='someone-else', expire_time=NOW + datetime.timedelta(seconds=60))

        with patch.object(self.manager.store, 'upsert_if_absent_or_expired', return_value=True):
            self.assertFalse(self.manager.acquire('job', 60))

        self.assertIsNone(self.manager.lock_id_for('job'))

    def test_acquire_store_unavailable(self):
        with patch.object(self.manager.store, 'read', side_effect=LockStoreUnavailable('job', 'read')):
            with self.assertRaises(LockStoreUnavailable):
                self.manager.acquire('job', 60)

        self.assertIsNone(self.manager.lock_id_for('job'))

    def test_acquire_bad_arguments(self):
        self.assertRaises(ValueError, self.manager.acquire, '', 60)
        self.assertRaises(ValueError, self.manager.acquire, 'x' * 256, 60)
        self.assertRaises(ValueError, self.manager.acquire, 'job', 0)
        self.assertRaises(ValueError, self.manager.acquire, 'job', -5)
        self.assertFalse(DistributedLock.objects.exists())

    def test_release_twice(self):
        self.manager.acquire('job', 60)
        lock_id = self.manager.lock_id_for('job')

        self.assertTrue(self.manager.release('job', lock_id=lock_id))
        self.assertFalse(self.manager.release('job', lock_id=lock_id))
        self.assertFalse(self.manager.release('job'))

    def test_release_wrong_lock_id(self):
        self.manager.acquire('job', 60)

        with self.assertLogs('sync_utils.distributed_lock.manager', level='WARNING'):
            self.assertFalse(self.manager.release('job', lock_id='not-mine'))

        self.assertTrue(self.manager.is_locked('job'))

    def test_release_never_acquired(self):
        G(DistributedLock, lock_key='job', lock_id='someone-else', expire_time=NOW + datetime.timedelta(seconds=60))

        self.assertFalse(self.manager.release('job'))
        self.assertTrue(DistributedLock.objects.filter(lock_key='job').exists())

    def test_is_locked(self):
        self.assertFalse(self.manager.is_locked('job'))

        self.manager.acquire('job', 60)
        self.assertTrue(self.manager.is_locked('job'))

        with freeze_time(NOW + datetime.timedelta(seconds=60)):
            self.assertFalse(self.manager.is_locked('job'))

        with freeze_time(NOW + datetime.timedelta(seconds=59)):
            self.assertTrue(self.manager.is_locked('job'))

    def test_extend(self):
        self.manager.acquire('job', 60)

        with freeze_time(NOW + datetime.timedelta(seconds=50)):
            self.assertTrue(self.manager.extend('job', 60))

        self.assertEqual(
            DistributedLock.objects.get(lock_key='job').expire_time,
            NOW + datetime.timedelta(seconds=110)
        )

        # The original expiry has passed, but the extended lock still holds
        with freeze_time(NOW + datetime.timedelta(seconds=90)):
            self.assertFalse(LockManager().acquire('job', 60))

    def test_extend_after_expiry(self):
        self.manager.acquire('job', 60)

        with freeze_time(NOW + datetime.timedelta(seconds=61)):
            self.assertFalse(self.manager.extend('job', 60))

    def test_extend_not_owner(self):
        self.manager.acquire('job', 60)

        self.assertFalse(LockManager().extend('job', 60))
        self.assertFalse(self.manager.extend('job', 60, lock_id='not-mine'))
        self.assertRaises(ValueError, self.manager.extend, 'job', 0)

    def test_clean_expired(self):
        G(DistributedLock, lock_key='old', lock_id='1', expire_time=NOW - datetime.timedelta(hours=2))
        G(DistributedLock, lock_key='recent', lock_id='2', expire_time=NOW - datetime.timedelta(minutes=5))
        self.manager.acquire('live', 60)

        self.assertEqual(self.manager.clean_expired(grace_period=3600), 1)
        self.assertEqual(self.manager.clean_expired(grace_period=datetime.timedelta(minutes=1)), 1)
        self.assertEqual(self.manager.clean_expired(), 0)

        self.assertEqual(list(DistributedLock.objects.values_list('lock_key', flat=True)), ['live'])
        self.assertTrue(self.manager.release('live'))

    @override_settings(DISTRIBUTED_LOCK_CLEANUP_GRACE_PERIOD=600)
    def test_clean_expired_default_grace_period(self):
        G(DistributedLock, lock_key='old', lock_id='1', expire_time=NOW - datetime.timedelta(hours=1))
        G(DistributedLock, lock_key='recent', lock_id='2', expire_time=NOW - datetime.timedelta(minutes=5))

        self.assertEqual(self.manager.clean_expired(), 1)
        self.assertRaises(ValueError, self.manager.clean_expired, -1)

    def test_force_release(self):
        G(DistributedLock, lock_key='job', lock_id='someone-else', expire_time=NOW + datetime.timedelta(seconds=60))

        self.assertEqual(self.manager.force_release('job'), 1)
        self.assertEqual(self.manager.force_release('job'), 0)
        self.assertTrue(self.manager.acquire('job', 60))

    def test_force_release_prefix(self):
        self.manager.acquire('wechat_sync_1', 60)
        self.manager.acquire('wechat_sync_2', 60)
        self.manager.acquire('news_sync_1', 60)

        self.assertEqual(self.manager.force_release_prefix('wechat_sync_'), 2)
        self.assertIsNone(self.manager.lock_id_for('wechat_sync_1'))
        self.assertIsNotNone(self.manager.lock_id_for('news_sync_1'))
        self.assertRaises(ValueError, self.manager.force_release_prefix, '')

    def test_force_release_all(self):
        self.manager.acquire('one', 60)
        self.manager.acquire('two', 60)

        self.assertEqual(self.manager.force_release_all(), 2)
        self.assertEqual(self.manager.list_locks(), [])
        self.assertIsNone(self.manager.lock_id_for('one'))
