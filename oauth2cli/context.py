"""
Cancellation and deadline for a single authorization code flow.

A FlowContext is shared by every step of a flow: the shutdown supervisor
polls it while the callback server waits for the browser, and the code
exchange uses whatever time it has left.
"""

import threading
import time
from typing import Optional

# Reasons reported by FlowContext.err().
CANCELLED = 'cancelled'
DEADLINE_EXCEEDED = 'deadline'


class FlowContext( object ):
    '''Cancellable execution context with an optional deadline.'''

    def __init__( self, timeout: Optional[float] = None ):
        """
        Create a context.

        Args:
            timeout (float): seconds from now until the deadline, or None for no deadline.
        """
        self._cancelled = threading.Event()
        self._deadline = None
        if timeout is not None:
            self._deadline = time.monotonic() + timeout

    @property
    def deadline( self ) -> Optional[float]:
        '''Deadline as a time.monotonic() value, or None.'''
        return self._deadline

    def cancel( self ):
        '''Cancel the context. Safe to call from any thread, more than once.'''
        self._cancelled.set()

    def err( self ) -> Optional[str]:
        '''Why the context is done: CANCELLED, DEADLINE_EXCEEDED or None.'''
        if self._cancelled.is_set():
            return CANCELLED
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DEADLINE_EXCEEDED
        return None

    def done( self ) -> bool:
        return self.err() is not None

    def remaining( self ) -> Optional[float]:
        '''Seconds left before the deadline (never negative), or None without a deadline.'''
        if self._deadline is None:
            return None
        return max( 0.0, self._deadline - time.monotonic() )

    def wait( self, timeout: Optional[float] = None ) -> bool:
        """
        Block until the context is done or timeout seconds elapsed.

        Args:
            timeout (float): maximum seconds to block, None to block until done.

        Returns:
            True if the context is done.
        """
        remaining = self.remaining()
        if remaining is not None and ( timeout is None or remaining < timeout ):
            timeout = remaining
        self._cancelled.wait( timeout = timeout )
        return self.done()
