from celery import Task

from sync_utils.distributed_lock.manager import LockManager


class CleanExpiredLocksTask(Task):
    """
    A periodic task that removes abandoned lock rows so the lock table does not grow
    """

    name = 'sync_utils.distributed_lock.tasks.CleanExpiredLocksTask'

    def run(self, grace_period=None, *args, **kwargs):
        """
        Main run method for cleanup
        :param grace_period: Seconds past expiry a row is kept, defaults to the
            DISTRIBUTED_LOCK_CLEANUP_GRACE_PERIOD setting
        :return: The number of deleted rows
        """
        return LockManager().clean_expired(grace_period=grace_period)


def register_tasks(app):
    """
    Class based tasks are not picked up by autodiscovery, so the project's celery app has to
    register them. Call this next to app.autodiscover_tasks().
    :return: The registered cleanup task
    """
    return app.register_task(CleanExpiredLocksTask())
