import base64
import hashlib
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple


class OAuth2CliException ( Exception ):
    '''Exception type used for various errors in the oauth2cli package.'''

    def __init__(self, message, code=None):
        """
        Initialize the exception with a message and an optional status code.

        Args:
            message (str): The error message.
            code (int, optional): An optional status code returned by a remote endpoint. Defaults to None.
        """
        super().__init__(message)
        self.code = code


class ConfigError( OAuth2CliException ):
    '''The OAuth2 client configuration is missing or invalid.'''
    pass


class FlowError( OAuth2CliException ):
    '''Base of every error that terminates an authorization code flow.'''
    pass


class BrowserLaunchError( FlowError ):
    '''The user's browser could not be opened to the authorization URL.'''
    pass


class ListenerBindError( FlowError ):
    '''The local callback server could not bind its address.'''
    pass


class InvalidStateError( FlowError ):
    '''The callback carried a state that does not match the one generated for the flow.'''

    def __init__( self, got, want ):
        super().__init__( "invalid state received: got %s, want %s" % ( got, want ) )
        self.got = got
        self.want = want


class MissingCodeError( FlowError ):
    '''The callback carried a valid state but no authorization code.'''

    def __init__( self, error = None, description = None ):
        message = "no code received"
        if error:
            message = "%s (%s: %s)" % ( message, error, description or 'no description' )
        super().__init__( message )
        self.error = error
        self.description = description


class ListenerShutdownError( FlowError ):
    '''The local callback server failed to stop cleanly.'''
    pass


class TokenExchangeError( FlowError ):
    '''The authorization code could not be exchanged for a token.'''
    pass


class CallbackTimeoutError( FlowError ):
    '''The flow deadline expired before the browser called back.'''
    pass


class FlowCancelledError( FlowError ):
    '''The flow was cancelled before the browser called back.'''
    pass


# Default function to call with debug messages.
DEFAULT_PRINT_DEBUG_FN: Optional[Callable[[str], None]] = None

def set_default_print_debug_fn( fn: Optional[Callable[[str], None]] = None ):
    """
    Set a default function to call with debug messages.

    Args:
        fn (function): the function to call with debug messages.
    """
    global DEFAULT_PRINT_DEBUG_FN
    DEFAULT_PRINT_DEBUG_FN = fn

def getDebugFn( print_debug_fn: Optional[Callable[[str], None]] = None ) -> Optional[Callable[[str], None]]:
    '''Resolve an explicit debug function, falling back on the default one.'''
    return print_debug_fn or DEFAULT_PRINT_DEBUG_FN

def printDebug( fn: Optional[Callable[[str], None]], msg: str ):
    if fn is not None:
        time_string = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
        fn( f"{time_string}: {msg}" )

def generateState() -> str:
    """
    Generate the anti-forgery state value of a flow.

    Returns:
        An unpredictable URL-safe string from the OS CSPRNG.
    """
    return secrets.token_urlsafe( 32 )

def generatePkcePair() -> Tuple[str, str]:
    """
    Generate PKCE parameters (RFC 7636, S256 method).

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    code_verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).decode('utf-8').rstrip('=')
    code_challenge = base64.urlsafe_b64encode(
        hashlib.sha256(code_verifier.encode('utf-8')).digest()
    ).decode('utf-8').rstrip('=')
    return code_verifier, code_challenge
