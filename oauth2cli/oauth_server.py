import hmac
import http.server
import queue
import socketserver
import threading
import urllib.parse
from typing import Optional

from .constants import DEFAULT_CALLBACK_PATH, DEFAULT_HOST, DEFAULT_PORT, REQUEST_READ_TIMEOUT, SHUTDOWN_GRACE, SUPERVISOR_POLL_INTERVAL
from .context import FlowContext
from .utils import ListenerBindError, ListenerShutdownError, getDebugFn, printDebug

# Failure reasons of a CallbackOutcome.
INVALID_STATE = 'invalid_state'
MISSING_CODE = 'missing_code'

# Markers carried on the completion queue.
DONE_CALLBACK = 'callback'
DONE_CLOSED = 'closed'


class CallbackOutcome( object ):
    '''Result of the one callback request that completes a flow.'''

    def __init__( self, code = None, reason = None, received_state = None, error = None, error_description = None ):
        self.code = code
        self.reason = reason
        self.received_state = received_state
        self.error = error
        self.error_description = error_description

    @classmethod
    def success( cls, code ):
        return cls( code = code )

    @classmethod
    def failure( cls, reason, received_state = None, error = None, error_description = None ):
        return cls( reason = reason, received_state = received_state, error = error, error_description = error_description )

    @property
    def is_success( self ):
        return self.reason is None

    def __repr__( self ):
        if self.is_success:
            return "CallbackOutcome(success)"
        return "CallbackOutcome(failure=%s)" % ( self.reason, )


class ListenerConfig( object ):
    '''Where the callback server listens and where the browser goes afterwards.'''

    def __init__( self, port: int = 0, host: str = DEFAULT_HOST, callback_path: str = DEFAULT_CALLBACK_PATH, redirect_url: str = '' ):
        """
        Args:
            port (int): port to listen on, 0 for DEFAULT_PORT.
            host (str): address to listen on.
            callback_path (str): path the provider redirects to, "/" matches any path.
            redirect_url (str): page the browser is sent to after a valid callback, empty for none.
        """
        if not callback_path:
            callback_path = DEFAULT_CALLBACK_PATH
        if not callback_path.startswith( '/' ):
            callback_path = '/' + callback_path
        self._port = port or DEFAULT_PORT
        self._host = host
        self._callback_path = callback_path
        self._redirect_url = redirect_url or ''

    @property
    def port( self ):
        return self._port

    @property
    def host( self ):
        return self._host

    @property
    def callback_path( self ):
        return self._callback_path

    @property
    def redirect_url( self ):
        return self._redirect_url

    def matches( self, path: str ) -> bool:
        if self._callback_path == '/':
            return True
        return path.rstrip( '/' ) == self._callback_path.rstrip( '/' )


def _first( params, name ):
    values = params.get( name )
    if not values:
        return ''
    return values[ 0 ]


class OAuthCallbackHandler( http.server.BaseHTTPRequestHandler ):
    """Handler for OAuth callback requests."""

    # Applied to the connection socket, bounds how long a stalled client keeps its thread.
    timeout = REQUEST_READ_TIMEOUT

    def do_GET( self ):
        """Handle GET request from OAuth provider redirect."""
        listener = self.server.listener
        parsed = urllib.parse.urlparse( self.path )

        if not listener.config.matches( parsed.path ):
            if parsed.path == '/favicon.ico':
                self._send_empty( 204 )
            else:
                self._send_empty( 404 )
            return

        params = urllib.parse.parse_qs( parsed.query, keep_blank_values = True )
        received_state = _first( params, 'state' )
        code = _first( params, 'code' )

        if not hmac.compare_digest( received_state.encode( 'utf-8' ), listener.state.encode( 'utf-8' ) ):
            outcome = CallbackOutcome.failure( INVALID_STATE, received_state = received_state )
        elif not code:
            outcome = CallbackOutcome.failure( MISSING_CODE,
                                               received_state = received_state,
                                               error = _first( params, 'error' ) or None,
                                               error_description = _first( params, 'error_description' ) or None )
        else:
            outcome = CallbackOutcome.success( code )

        if not listener.record( outcome ):
            # The flow already has its outcome.
            self._send_empty( 410 )
            return

        try:
            redirect_url = listener.config.redirect_url
            if outcome.is_success and redirect_url:
                self.send_response( 303 )
                self.send_header( 'Location', redirect_url )
                self.send_header( 'Content-Length', '0' )
                self.end_headers()
            else:
                self._send_empty( 200 )
        finally:
            listener.signal( DONE_CALLBACK )

    def _send_empty( self, status: int ):
        self.send_response( status )
        self.send_header( 'Content-Length', '0' )
        self.end_headers()

    def log_message( self, format, *args ):
        """Route access logs to the debug function."""
        self.server.listener.debug( "%s - %s" % ( self.address_string(), format % args ) )


class CallbackServer( socketserver.ThreadingMixIn, socketserver.TCPServer ):
    '''TCP server owned by exactly one CallbackListener.

    Each connection is handled on its own thread, so an idle connection
    (browsers preconnect) never holds up the serve loop or its shutdown.
    '''

    allow_reuse_address = True
    daemon_threads = True
    block_on_close = False

    def __init__( self, address, listener ):
        self.listener = listener
        super().__init__( address, OAuthCallbackHandler )


class CallbackListener( object ):
    """Local HTTP server receiving the redirect of one authorization code flow."""

    def __init__( self, state: str, config: Optional[ListenerConfig] = None, print_debug_fn = None ):
        """
        Initialize the listener.

        Args:
            state: The anti-forgery state generated for the flow
            config: Where to listen, defaults to ListenerConfig()
            print_debug_fn: Callback receiving debug messages
        """
        self.state = state
        self.config = config or ListenerConfig()
        self._debug = getDebugFn( print_debug_fn )
        self._server = None
        self._done = queue.Queue()
        self._lock = threading.Lock()
        self._outcome = None
        self._shutdown_error = None
        self._stop_reason = None
        self._supervisor = None
        self._closed = False

    def debug( self, msg ):
        printDebug( self._debug, msg )

    def bind( self ) -> int:
        """
        Bind and listen on the configured address.

        Returns:
            The port the server is listening on

        Raises:
            ListenerBindError: If the address cannot be bound
        """
        address = ( self.config.host, self.config.port )
        try:
            self._server = CallbackServer( address, self )
        except OSError as e:
            raise ListenerBindError( "could not listen on %s:%s: %s" % ( address[ 0 ], address[ 1 ], e ) ) from e
        self.debug( "callback server listening on %s" % ( self.redirect_uri, ) )
        return self.port

    @property
    def port( self ) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_address[ 1 ]

    @property
    def redirect_uri( self ) -> str:
        return "http://%s:%s%s" % ( self.config.host, self.port or self.config.port, self.config.callback_path )

    @property
    def outcome( self ) -> Optional[CallbackOutcome]:
        return self._outcome

    @property
    def shutdown_error( self ) -> Optional[ListenerShutdownError]:
        return self._shutdown_error

    @property
    def stop_reason( self ) -> Optional[str]:
        '''What triggered the shutdown: DONE_CALLBACK, a FlowContext reason, or None.'''
        return self._stop_reason

    def record( self, outcome: CallbackOutcome ) -> bool:
        '''Record the outcome of the flow. Only the first call wins.'''
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
        self.debug( "callback received: %r" % ( outcome, ) )
        return True

    def signal( self, reason: str ):
        self._done.put( reason )

    def start_supervisor( self, ctx: FlowContext ):
        '''Start the thread that shuts the server down once the flow is complete.'''
        self._supervisor = threading.Thread( target = self._supervise, args = ( ctx, ) )
        self._supervisor.daemon = True
        self._supervisor.start()

    def _supervise( self, ctx: FlowContext ):
        reason = None
        while reason is None:
            try:
                reason = self._done.get( timeout = SUPERVISOR_POLL_INTERVAL )
            except queue.Empty:
                reason = ctx.err()

        if reason == DONE_CLOSED:
            return

        self._stop_reason = reason
        self.debug( "shutting down callback server (%s)" % ( reason, ) )
        self._shutdown()

    def _shutdown( self ):
        # Shutdown blocks until the serve loop exits, keep it bounded.
        stopper = threading.Thread( target = self._stopServer )
        stopper.daemon = True
        stopper.start()
        stopper.join( timeout = SHUTDOWN_GRACE )
        if stopper.is_alive():
            self._setShutdownError( ListenerShutdownError( "failed to shutdown server: still running after %s seconds" % ( SHUTDOWN_GRACE, ) ) )

    def _stopServer( self ):
        try:
            self._server.shutdown()
        except Exception as e:
            self._setShutdownError( ListenerShutdownError( "failed to shutdown server: %s" % ( e, ) ) )

    def _setShutdownError( self, err ):
        with self._lock:
            if self._shutdown_error is None:
                self._shutdown_error = err
        self.debug( str( err ) )

    def serve( self ):
        '''Serve callbacks, blocking until the supervisor shuts the server down.'''
        self._server.serve_forever( poll_interval = SUPERVISOR_POLL_INTERVAL )

    def close( self ):
        '''Release the listening socket and let the supervisor exit.'''
        if self._closed:
            return
        self._closed = True
        if self._server is not None:
            self._server.server_close()
        if self._supervisor is not None:
            self.signal( DONE_CLOSED )
            self._supervisor.join( timeout = SHUTDOWN_GRACE )
        self.debug( "callback server closed" )
