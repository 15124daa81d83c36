"""
Unit tests for the local OAuth callback server.
"""

import socket
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from oauth2cli import oauth_server
from oauth2cli.constants import DEFAULT_PORT
from oauth2cli.context import CANCELLED, DEADLINE_EXCEEDED, FlowContext
from oauth2cli.oauth_server import CallbackListener, CallbackOutcome, ListenerConfig, INVALID_STATE, MISSING_CODE, DONE_CALLBACK
from oauth2cli.utils import ListenerBindError, ListenerShutdownError


class RunningListener:
    """Serve a listener in a background thread, the way the flow serves it in the caller's thread."""

    def __init__(self, listener, ctx=None):
        self.listener = listener
        self.ctx = ctx or FlowContext(timeout=10)
        self.listener.bind()
        self.listener.start_supervisor(self.ctx)
        self.thread = threading.Thread(target=self._serve)
        self.thread.daemon = True
        self.thread.start()

    def _serve(self):
        try:
            self.listener.serve()
        finally:
            self.listener.close()

    def url(self, path='/', **params):
        return requests.Request('GET', 'http://127.0.0.1:%s%s' % (self.listener.port, path), params=params).prepare().url

    def get(self, path='/', **params):
        session = requests.Session()
        # Loopback only, ignore any proxy settings.
        session.trust_env = False
        return session.get(self.url(path, **params), allow_redirects=False, timeout=5)

    def join(self, timeout=5):
        self.thread.join(timeout=timeout)
        assert not self.thread.is_alive(), "serve did not return"


def _assert_port_free(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind(('127.0.0.1', port))


class TestListenerConfig:
    """Test listener configuration defaults."""

    def test_default_port(self):
        assert ListenerConfig().port == DEFAULT_PORT
        assert ListenerConfig(port=0).port == 4321
        assert ListenerConfig(port=8085).port == 8085

    def test_callback_path_normalized(self):
        assert ListenerConfig(callback_path='callback').callback_path == '/callback'
        assert ListenerConfig(callback_path='').callback_path == '/'

    def test_root_path_matches_everything(self):
        config = ListenerConfig()

        assert config.matches('/')
        assert config.matches('/oauth/callback')

    def test_specific_path(self):
        config = ListenerConfig(callback_path='/callback')

        assert config.matches('/callback')
        assert config.matches('/callback/')
        assert not config.matches('/')
        assert not config.matches('/other')


class TestCallbackHandling:
    """Test the handling of the callback request."""

    def test_valid_callback(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)))

        response = running.get(state='abc123', code='xyz')
        running.join()

        assert response.status_code == 200
        assert response.content == b''
        assert 'Location' not in response.headers

        outcome = running.listener.outcome
        assert outcome.is_success
        assert outcome.code == 'xyz'
        assert running.listener.stop_reason == DONE_CALLBACK
        assert running.listener.shutdown_error is None
        _assert_port_free(free_port)

    def test_valid_callback_with_redirect(self, free_port):
        config = ListenerConfig(port=free_port, redirect_url='https://example.com/done')
        running = RunningListener(CallbackListener('abc123', config))

        response = running.get(state='abc123', code='xyz')
        running.join()

        assert response.status_code == 303
        assert response.headers['Location'] == 'https://example.com/done'

    def test_invalid_state(self, free_port):
        config = ListenerConfig(port=free_port, redirect_url='https://example.com/done')
        running = RunningListener(CallbackListener('abc123', config))

        response = running.get(state='wrong', code='xyz')
        running.join()

        # No redirect on failure.
        assert response.status_code == 200
        outcome = running.listener.outcome
        assert outcome.reason == INVALID_STATE
        assert outcome.received_state == 'wrong'
        assert outcome.code is None

    def test_missing_state(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)))

        running.get(code='xyz')
        running.join()

        assert running.listener.outcome.reason == INVALID_STATE
        assert running.listener.outcome.received_state == ''

    def test_missing_code(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)))

        running.get(state='abc123', error='access_denied', error_description='user said no')
        running.join()

        outcome = running.listener.outcome
        assert outcome.reason == MISSING_CODE
        assert outcome.error == 'access_denied'
        assert outcome.error_description == 'user said no'

    def test_empty_code(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)))

        running.get(state='abc123', code='')
        running.join()

        assert running.listener.outcome.reason == MISSING_CODE

    def test_other_paths_do_not_complete_the_flow(self, free_port):
        config = ListenerConfig(port=free_port, callback_path='/callback')
        running = RunningListener(CallbackListener('abc123', config))

        assert running.get('/favicon.ico').status_code == 204
        assert running.get('/', state='abc123', code='xyz').status_code == 404
        assert running.listener.outcome is None
        assert running.thread.is_alive()

        assert running.get('/callback', state='abc123', code='xyz').status_code == 200
        running.join()
        assert running.listener.outcome.code == 'xyz'

    def test_first_callback_wins(self):
        listener = CallbackListener('abc123')

        assert listener.record(CallbackOutcome.success('first')) is True
        assert listener.record(CallbackOutcome.failure(INVALID_STATE, received_state='x')) is False
        assert listener.outcome.code == 'first'

    def test_late_callback_is_gone(self, free_port):
        listener = CallbackListener('abc123', ListenerConfig(port=free_port))
        listener.record(CallbackOutcome.success('first'))
        # Nothing is signalled, the server keeps serving until cancelled.
        ctx = FlowContext(timeout=10)
        running = RunningListener(listener, ctx)

        response = running.get(state='abc123', code='second')
        assert response.status_code == 410
        assert listener.outcome.code == 'first'

        ctx.cancel()
        running.join()

    def test_access_log_goes_to_debug_fn(self, free_port):
        messages = []
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port), print_debug_fn=messages.append))

        running.get(state='abc123', code='xyz')
        running.join()

        assert any('GET /?' in m for m in messages)
        assert any('callback server closed' in m for m in messages)


class TestLifecycle:
    """Test binding, shutdown and cancellation."""

    def test_bind_failure(self, free_port):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(('127.0.0.1', free_port))
            blocker.listen(1)

            listener = CallbackListener('abc123', ListenerConfig(port=free_port))
            with pytest.raises(ListenerBindError) as exc_info:
                listener.bind()

        assert '127.0.0.1:%s' % free_port in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_redirect_uri(self, free_port):
        listener = CallbackListener('abc123', ListenerConfig(port=free_port, callback_path='/cb'))
        listener.bind()
        try:
            assert listener.redirect_uri == 'http://127.0.0.1:%s/cb' % free_port
        finally:
            listener.close()

    def test_cancel_while_waiting(self, free_port):
        ctx = FlowContext()
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)), ctx)

        start = time.monotonic()
        ctx.cancel()
        running.join()

        assert time.monotonic() - start < 2
        assert running.listener.outcome is None
        assert running.listener.stop_reason == CANCELLED
        _assert_port_free(free_port)

    def test_deadline_while_waiting(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)), FlowContext(timeout=0.2))

        running.join()

        assert running.listener.stop_reason == DEADLINE_EXCEEDED

    def test_cancel_with_idle_connection(self, free_port):
        ctx = FlowContext()
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)), ctx)

        with socket.create_connection(('127.0.0.1', free_port)):
            # Give the server time to accept the connection.
            time.sleep(0.2)
            start = time.monotonic()
            ctx.cancel()
            running.join()

            assert time.monotonic() - start < 2
            assert running.listener.stop_reason == CANCELLED
            assert running.listener.shutdown_error is None

    def test_idle_connection_does_not_block_callback(self, free_port):
        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)))

        with socket.create_connection(('127.0.0.1', free_port)):
            time.sleep(0.2)
            response = running.get(state='abc123', code='xyz')
            running.join()

        assert response.status_code == 200
        assert running.listener.outcome.code == 'xyz'

    def test_read_timeout_below_shutdown_grace(self):
        assert oauth_server.REQUEST_READ_TIMEOUT < oauth_server.SHUTDOWN_GRACE
        assert oauth_server.OAuthCallbackHandler.timeout == oauth_server.REQUEST_READ_TIMEOUT

    def test_already_cancelled_context(self, free_port):
        ctx = FlowContext()
        ctx.cancel()

        running = RunningListener(CallbackListener('abc123', ListenerConfig(port=free_port)), ctx)
        running.join()

        assert running.listener.stop_reason == CANCELLED

    def test_shutdown_timeout_is_reported(self, monkeypatch):
        monkeypatch.setattr(oauth_server, 'SHUTDOWN_GRACE', 0.05)
        listener = CallbackListener('abc123')
        listener._server = MagicMock()
        listener._server.shutdown.side_effect = lambda: time.sleep(0.5)

        listener._shutdown()

        assert isinstance(listener.shutdown_error, ListenerShutdownError)
        assert 'failed to shutdown server' in str(listener.shutdown_error)

    def test_shutdown_exception_is_reported(self):
        listener = CallbackListener('abc123')
        listener._server = MagicMock()
        listener._server.shutdown.side_effect = RuntimeError('boom')

        listener._shutdown()

        assert isinstance(listener.shutdown_error, ListenerShutdownError)
        assert 'boom' in str(listener.shutdown_error)

    def test_close_is_idempotent(self, free_port):
        listener = CallbackListener('abc123', ListenerConfig(port=free_port))
        listener.bind()

        listener.close()
        listener.close()

        _assert_port_free(free_port)
