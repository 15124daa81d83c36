"""
OAuth2 client configuration and the authorization code exchange.

OAuth2Config is the collaborator used by the authorization code flow: it
builds the URL the user's browser is sent to and exchanges the code
returned on the callback for a Token. Any object exposing the same two
methods can be handed to the flow instead.
"""

import time
import urllib.parse
from typing import Any, Dict, List, Optional

import requests

from .constants import TOKEN_REQUEST_TIMEOUT
from .utils import OAuth2CliException, getDebugFn, printDebug

# Client credentials sent with HTTP Basic authentication.
AUTH_STYLE_IN_HEADER = 'header'
# Client credentials sent in the form body.
AUTH_STYLE_IN_PARAMS = 'params'


class OAuth2Error( OAuth2CliException ):
    """Token endpoint errors."""

    def __init__( self, message, code = None, body = None ):
        super().__init__( message, code = code )
        self.body = body


class Token( object ):
    '''Credentials returned by a successful code exchange.'''

    def __init__( self, access_token: str, token_type: str = 'Bearer', refresh_token: Optional[str] = None, expiry: Optional[int] = None, raw: Optional[Dict[str, Any]] = None ):
        self.access_token = access_token
        self.token_type = token_type
        self.refresh_token = refresh_token
        self.expiry = expiry
        self.raw = dict( raw or {} )

    @classmethod
    def from_response( cls, data: Dict[str, Any] ) -> 'Token':
        """
        Build a token from a token endpoint response.

        Args:
            data: Decoded response body

        Returns:
            The token, with expires_in converted to an absolute expiry

        Raises:
            OAuth2Error: If the response carries no access token
        """
        access_token = data.get( 'access_token' )
        if not access_token:
            raise OAuth2Error( "server response missing access_token", body = data )

        expiry = None
        expires_in = data.get( 'expires_in' )
        if expires_in not in ( None, '' ):
            try:
                expiry = int( time.time() ) + int( expires_in )
            except ( TypeError, ValueError ):
                raise OAuth2Error( "invalid expires_in in server response: %r" % ( expires_in, ), body = data )

        return cls( access_token,
                    token_type = data.get( 'token_type' ) or 'Bearer',
                    refresh_token = data.get( 'refresh_token' ) or None,
                    expiry = expiry,
                    raw = data )

    def extra( self, key: str, default: Any = None ) -> Any:
        '''Get a field of the raw response, like "id_token" or "scope".'''
        return self.raw.get( key, default )

    def to_dict( self ) -> Dict[str, Any]:
        out = dict( self.raw )
        out[ 'access_token' ] = self.access_token
        out[ 'token_type' ] = self.token_type
        if self.refresh_token:
            out[ 'refresh_token' ] = self.refresh_token
        if self.expiry is not None:
            out[ 'expiry' ] = self.expiry
        return out

    def __eq__( self, other ):
        if not isinstance( other, Token ):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__( self ):
        return "Token(token_type=%r, expiry=%r, refresh_token=%s)" % ( self.token_type, self.expiry, 'yes' if self.refresh_token else 'no' )


class OAuth2Config( object ):
    """OAuth2 client: endpoints, credentials and scopes of a provider."""

    def __init__( self, client_id: str, client_secret: Optional[str] = None, auth_url: str = '', token_url: str = '', redirect_url: Optional[str] = None, scopes: Optional[List[str]] = None, auth_style: str = AUTH_STYLE_IN_HEADER, print_debug_fn = None ):
        """
        Initialize the client configuration.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret, None for public clients
            auth_url: Authorization endpoint
            token_url: Token endpoint
            redirect_url: Redirect URI registered with the provider
            scopes: Scopes to request
            auth_style: AUTH_STYLE_IN_HEADER or AUTH_STYLE_IN_PARAMS
            print_debug_fn: Callback receiving debug messages
        """
        if auth_style not in ( AUTH_STYLE_IN_HEADER, AUTH_STYLE_IN_PARAMS ):
            raise ValueError( "invalid auth style: %s" % ( auth_style, ) )
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_url = auth_url
        self.token_url = token_url
        self.redirect_url = redirect_url
        self.scopes = list( scopes or [] )
        self.auth_style = auth_style
        self._debug = getDebugFn( print_debug_fn )

    def auth_code_url( self, state: str, **params ) -> str:
        """
        Build the URL of the provider's consent page.

        Args:
            state: Anti-forgery state echoed back on the callback
            params: Extra query parameters (PKCE challenge, prompt, ...)

        Returns:
            The authorization URL
        """
        query = {
            'response_type': 'code',
            'client_id': self.client_id,
        }
        if self.redirect_url:
            query[ 'redirect_uri' ] = self.redirect_url
        if self.scopes:
            query[ 'scope' ] = ' '.join( self.scopes )
        if state:
            query[ 'state' ] = state
        query.update( { k: v for k, v in params.items() if v is not None } )

        separator = '&' if '?' in self.auth_url else '?'
        return "%s%s%s" % ( self.auth_url, separator, urllib.parse.urlencode( query ) )

    def exchange( self, code: str, timeout: Optional[float] = None, **params ) -> Token:
        """
        Exchange an authorization code for a token.

        Args:
            code: Authorization code received on the callback
            timeout: Request timeout in seconds, None for the default
            params: Extra form parameters (PKCE verifier, ...)

        Returns:
            The token

        Raises:
            OAuth2Error: If the token endpoint rejects the exchange
        """
        payload = {
            'grant_type': 'authorization_code',
            'code': code,
        }
        if self.redirect_url:
            payload[ 'redirect_uri' ] = self.redirect_url
        payload.update( { k: v for k, v in params.items() if v is not None } )

        auth = None
        if self.auth_style == AUTH_STYLE_IN_HEADER and self.client_secret:
            # RFC 6749 section 2.3.1 wants both parts form-encoded before the Basic encoding.
            auth = ( urllib.parse.quote( self.client_id, safe = '' ),
                     urllib.parse.quote( self.client_secret, safe = '' ) )
        else:
            payload[ 'client_id' ] = self.client_id
            if self.client_secret:
                payload[ 'client_secret' ] = self.client_secret

        printDebug( self._debug, "exchanging authorization code at %s" % ( self.token_url, ) )
        try:
            response = requests.post(
                self.token_url,
                data = payload,
                auth = auth,
                headers = { 'Accept': 'application/json' },
                timeout = timeout if timeout is not None else TOKEN_REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise OAuth2Error( f"token request failed: {str(e)}" ) from e

        data = self._decode( response )
        printDebug( self._debug, "token endpoint returned %s" % ( response.status_code, ) )

        if not 200 <= response.status_code < 300:
            raise OAuth2Error( "token endpoint returned %s: %s" % ( response.status_code, self._describe( data, response.text ) ),
                               code = response.status_code,
                               body = data if data else response.text )

        # Some providers report errors with a 200 status.
        if data.get( 'error' ):
            raise OAuth2Error( "token endpoint returned an error: %s" % ( self._describe( data, response.text ), ),
                               code = response.status_code,
                               body = data )

        return Token.from_response( data )

    def _decode( self, response ) -> Dict[str, Any]:
        '''Decode a JSON or form-encoded token response.'''
        content_type = response.headers.get( 'Content-Type', '' ).split( ';' )[ 0 ].strip().lower()
        if content_type in ( 'application/x-www-form-urlencoded', 'text/plain' ):
            return { k: v[ 0 ] for k, v in urllib.parse.parse_qs( response.text ).items() }
        try:
            data = response.json()
        except ValueError:
            return {}
        if not isinstance( data, dict ):
            return {}
        return data

    @staticmethod
    def _describe( data: Dict[str, Any], text: str ) -> str:
        error = data.get( 'error' )
        if isinstance( error, dict ):
            # Google style nested errors.
            return error.get( 'message', 'Unknown error' )
        if error:
            description = data.get( 'error_description' )
            return "%s - %s" % ( error, description ) if description else str( error )
        return text.strip() or 'Unknown error'
