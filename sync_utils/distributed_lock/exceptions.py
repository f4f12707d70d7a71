class DistributedLockException(Exception):
    """
    Base class for errors raised by the distributed lock. Failing to get a busy lock is
    not one of them: that is a normal outcome and is returned as False.
    """
    pass


class LockStoreUnavailable(DistributedLockException):
    """
    Raised when the lock table cannot be reached. The outcome of the operation is unknown,
    so callers must treat the lock as not acquired and may retry later.
    """

    def __init__(self, lock_key, operation):
        self.lock_key = lock_key
        self.operation = operation
        super(LockStoreUnavailable, self).__init__(
            'Lock store unavailable during {0} of {1}'.format(operation, lock_key)
        )


class LockUsageError(DistributedLockException):
    """
    Raised when the lock is used in a way that would break its guarantees
    """
    pass
