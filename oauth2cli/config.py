import os
from typing import Any, Dict, Optional

import yaml

from . import constants
from .constants import CONFIG_ENV_NAME_ENV_VAR, CONFIG_FILE_ENV_VAR, DEFAULT_CALLBACK_PATH, DEFAULT_HOST, DEFAULT_PORT, ENV_VAR_PREFIX
from .oauth import AUTH_STYLE_IN_HEADER, OAuth2Config
from .utils import ConfigError

# Keys of a client configuration, in the YAML file or as OAUTH2CLI_<KEY> variables.
CONFIG_KEYS = ( 'client_id', 'client_secret', 'auth_url', 'token_url', 'redirect_url', 'scopes', 'auth_style' )

REQUIRED_KEYS = ( 'client_id', 'auth_url', 'token_url' )


def getConfigFilePath( path: Optional[str] = None ) -> str:
    if path:
        return os.path.expanduser( path )
    return os.environ.get( CONFIG_FILE_ENV_VAR, None ) or constants.CONFIG_FILE_PATH

def loadConfigFile( environment: Optional[str] = None, path: Optional[str] = None ) -> Dict[str, Any]:
    """
    Load the client configuration stored in the YAML config file.

    Default settings are at the top of the file, named ones under "env":

        client_id: ...
        auth_url: ...
        env:
          github:
            client_id: ...

    Args:
        environment (str): name of the "env" section to use, None or "default" for the top level.
        path (str): config file to read instead of the default one.

    Returns:
        dict of settings, empty if the file does not exist.
    """
    path = getConfigFilePath( path )
    try:
        with open( path, 'rb' ) as f:
            conf = yaml.safe_load( f.read() )
    except FileNotFoundError:
        if environment not in ( None, 'default' ):
            raise ConfigError( "config file not found: %s" % ( path, ) )
        return {}
    except yaml.YAMLError as e:
        raise ConfigError( "invalid config file %s: %s" % ( path, e ) ) from e

    # Handle scenario where a file is empty
    conf = conf or {}
    if not isinstance( conf, dict ):
        raise ConfigError( "invalid config file %s: expected a mapping" % ( path, ) )

    if environment in ( None, 'default' ):
        return { k: v for k, v in conf.items() if k in CONFIG_KEYS }

    envs = conf.get( 'env', None ) or {}
    if environment not in envs:
        raise ConfigError( "environment not found in %s: %s" % ( path, environment ) )
    return { k: v for k, v in ( envs[ environment ] or {} ).items() if k in CONFIG_KEYS }

def loadEnvironmentVariables() -> Dict[str, Any]:
    '''Settings from OAUTH2CLI_<KEY> environment variables.'''
    conf = {}
    for key in CONFIG_KEYS:
        value = os.environ.get( ENV_VAR_PREFIX + key.upper(), None )
        if value:
            conf[ key ] = value
    return conf

def defaultRedirectURL( port: int = 0, callback_path: str = DEFAULT_CALLBACK_PATH ) -> str:
    '''The redirect URI served by the local callback server.'''
    if not callback_path.startswith( '/' ):
        callback_path = '/' + callback_path
    return "http://%s:%s%s" % ( DEFAULT_HOST, port or DEFAULT_PORT, callback_path )

def loadConfig( environment: Optional[str] = None, path: Optional[str] = None, port: int = 0, callback_path: str = DEFAULT_CALLBACK_PATH, overrides: Optional[Dict[str, Any]] = None, print_debug_fn = None ) -> OAuth2Config:
    """
    Build the OAuth2 client configuration.

    Settings are acquired in the following order, later ones winning:
    1- The config file (OAUTH2CLI_CONFIG_FILE or ~/.oauth2cli), top level or named environment.
    2- OAUTH2CLI_<KEY> environment variables.
    3- Explicit overrides.

    Args:
        environment (str): named environment in the config file, defaults to OAUTH2CLI_ENV.
        path (str): config file to read instead of the default one.
        port (int): port of the callback server, used for the default redirect URL.
        callback_path (str): path of the callback server, used for the default redirect URL.
        overrides (dict): settings taking precedence over everything else.
        print_debug_fn (function): callback receiving debug messages.

    Returns:
        an OAuth2Config.
    """
    if environment is None:
        environment = os.environ.get( CONFIG_ENV_NAME_ENV_VAR, None ) or None

    conf = loadConfigFile( environment = environment, path = path )
    conf.update( loadEnvironmentVariables() )
    conf.update( { k: v for k, v in ( overrides or {} ).items() if v not in ( None, '', [] ) } )

    missing = [ k for k in REQUIRED_KEYS if not conf.get( k ) ]
    if missing:
        raise ConfigError( "missing OAuth2 client settings: %s" % ( ', '.join( missing ), ) )

    scopes = conf.get( 'scopes', None ) or []
    if isinstance( scopes, str ):
        scopes = scopes.split()

    try:
        return OAuth2Config( str( conf[ 'client_id' ] ),
                             client_secret = conf.get( 'client_secret', None ),
                             auth_url = conf[ 'auth_url' ],
                             token_url = conf[ 'token_url' ],
                             redirect_url = conf.get( 'redirect_url', None ) or defaultRedirectURL( port, callback_path ),
                             scopes = scopes,
                             auth_style = conf.get( 'auth_style', None ) or AUTH_STYLE_IN_HEADER,
                             print_debug_fn = print_debug_fn )
    except ValueError as e:
        raise ConfigError( str( e ) ) from e
