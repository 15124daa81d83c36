"""
Interactive OAuth2 authorization code flow for local applications.

The flow stands up a temporary HTTP server on the loopback interface in
order to handle the OAuth2 callback, sends the user's browser to the
provider's consent page and exchanges the code received on the callback
for a token.

The server is shut down after handling the first callback, regardless of
success or failure, and its port is released before the flow returns.
"""

import sys
import webbrowser
from typing import Callable, Optional

from .constants import DEFAULT_CALLBACK_PATH, DEFAULT_HOST
from .context import CANCELLED, DEADLINE_EXCEEDED, FlowContext
from .oauth_server import CallbackListener, ListenerConfig, INVALID_STATE, MISSING_CODE
from .utils import BrowserLaunchError, CallbackTimeoutError, FlowCancelledError, InvalidStateError, MissingCodeError, TokenExchangeError, generatePkcePair, generateState, getDebugFn, printDebug


class AuthCodeFlow( object ):
    """One authorization code exchange through the user's browser."""

    def __init__( self, config, local_port: int = 0, redirect: str = '', callback_path: str = DEFAULT_CALLBACK_PATH, opener: Optional[Callable[[str], bool]] = None, no_browser: bool = False, pkce: bool = False, print_debug_fn = None ):
        """
        Initialize the flow.

        Args:
            config: OAuth2 client exposing auth_code_url(state, **params) and exchange(code, timeout=None, **params)
            local_port: Port of the callback server, 0 for DEFAULT_PORT
            redirect: Page the browser is sent to after a valid callback, empty for none
            callback_path: Path the provider redirects to
            opener: Callable opening a URL in the browser, defaults to webbrowser.open
            no_browser: If True, print URL instead of opening browser
            pkce: If True, protect the exchange with a PKCE S256 challenge
            print_debug_fn: Callback receiving debug messages
        """
        self._config = config
        self._listener_config = ListenerConfig( port = local_port,
                                                host = DEFAULT_HOST,
                                                callback_path = callback_path,
                                                redirect_url = redirect )
        self._opener = opener or webbrowser.open
        self._no_browser = no_browser
        self._pkce = pkce
        self._print_debug_fn = getDebugFn( print_debug_fn )

    def _printDebug( self, msg ):
        printDebug( self._print_debug_fn, msg )

    def run( self, ctx: Optional[FlowContext] = None ):
        """
        Run the flow to completion.

        Args:
            ctx: Cancellation and deadline of the flow, None for neither

        Returns:
            The token returned by the code exchange

        Raises:
            FlowError: Exactly one of the flow error kinds
        """
        if ctx is None:
            ctx = FlowContext()

        # Nothing is bound or opened for a context that is already done.
        err = ctx.err()
        if err is not None:
            raise _contextError( err )

        state = generateState()
        auth_params = {}
        exchange_params = {}
        if self._pkce:
            code_verifier, code_challenge = generatePkcePair()
            auth_params = { 'code_challenge': code_challenge, 'code_challenge_method': 'S256' }
            exchange_params = { 'code_verifier': code_verifier }

        url = self._config.auth_code_url( state, **auth_params )

        # Bind before opening the browser, a callback must have somewhere to land.
        listener = CallbackListener( state, self._listener_config, print_debug_fn = self._print_debug_fn )
        listener.bind()
        try:
            self._launch( url )
            listener.start_supervisor( ctx )
            listener.serve()
        finally:
            # Always release the port.
            listener.close()

        code = self._checkListener( listener )
        return self._exchange( ctx, code, exchange_params )

    def _launch( self, url ):
        if self._no_browser:
            print( f"\nPlease visit this URL to authenticate:\n{url}\n", file = sys.stderr )
            return

        self._printDebug( "opening browser to %s" % ( url, ) )
        try:
            opened = self._opener( url )
        except Exception as e:
            raise BrowserLaunchError( f"could not open browser for auth: {e}" ) from e
        if opened is False:
            raise BrowserLaunchError( "could not open browser for auth: no usable browser found" )

    def _checkListener( self, listener: CallbackListener ) -> str:
        outcome = listener.outcome
        if outcome is not None and not outcome.is_success:
            if outcome.reason == INVALID_STATE:
                raise InvalidStateError( outcome.received_state, listener.state )
            if outcome.reason == MISSING_CODE:
                raise MissingCodeError( outcome.error, outcome.error_description )

        if listener.shutdown_error is not None:
            raise listener.shutdown_error

        if outcome is None:
            raise _contextError( listener.stop_reason )

        return outcome.code

    def _exchange( self, ctx: FlowContext, code: str, params ):
        err = ctx.err()
        if err is not None:
            raise TokenExchangeError( f"could not exchange for token: context {err}" )

        try:
            return self._config.exchange( code, timeout = ctx.remaining(), **params )
        except Exception as e:
            raise TokenExchangeError( f"could not exchange for token: {e}" ) from e


def _contextError( reason ):
    if reason == DEADLINE_EXCEEDED:
        return CallbackTimeoutError( "timed out waiting for the authorization callback" )
    if reason == CANCELLED:
        return FlowCancelledError( "authorization flow cancelled" )
    return FlowCancelledError( "callback server stopped before receiving a callback" )


def token( ctx: Optional[FlowContext], config, local_port: int = 0, redirect: str = '', **kwargs ):
    """
    Complete the OAuth2 flow and return a token from a code exchange.

    If local_port is 0, DEFAULT_PORT is used. The user's browser is
    redirected to the redirect URL after a valid callback; if it is
    empty, no redirect occurs.

    Args:
        ctx: Cancellation and deadline of the flow, None for neither
        config: OAuth2 client, see AuthCodeFlow
        local_port: Port of the callback server
        redirect: Page the browser is sent to after a valid callback
        kwargs: Other AuthCodeFlow options

    Returns:
        The token returned by the code exchange
    """
    return AuthCodeFlow( config, local_port = local_port, redirect = redirect, **kwargs ).run( ctx )
