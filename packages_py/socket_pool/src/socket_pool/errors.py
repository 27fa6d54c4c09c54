"""
Exceptions raised by socket-pool
"""


class SocketPoolError(RuntimeError):
    """Base error for pool manager failures"""


class PoolClosedError(SocketPoolError):
    """Raised when acquiring from, or waiting on, a closed manager"""


class PoolQueueFullError(SocketPoolError):
    """Raised when a saturated pool has no room left in its waiting queue"""


class AcquireTimeoutError(SocketPoolError, TimeoutError):
    """Raised when a queued acquisition is not satisfied in time"""
