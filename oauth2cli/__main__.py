import sys
import traceback
from .constants import DEFAULT_CALLBACK_PATH, DEFAULT_PORT, OAUTH_CALLBACK_TIMEOUT


def cli(args):
    """
    Command line interface of oauth2cli.

    Args:
        args (list): list of CLI arguments to parse.
    """
    import argparse

    parser = argparse.ArgumentParser( prog = 'oauth2cli' )
    parser.add_argument( 'action',
                         type = str,
                         help = 'action, currently supported "version" (print the package version), "token" (run an authorization code flow in the browser and print the token)' )

    # Everything after the action name is passed to the action argument parser.
    rootArgs = args[ 1: 2 ]
    actionArgs = args[ 2: ]
    args = parser.parse_args( rootArgs )

    if args.action.lower() == 'version':
        from . import __version__
        print( "oauth2cli Version %s" % ( __version__, ) )
    elif args.action.lower() == 'token':
        _token( actionArgs )
    else:
        raise Exception( 'invalid action: %s' % (args.action.lower()) )

def _token( actionArgs ):
    import argparse

    from .config import loadConfig
    from .context import FlowContext
    from .flow import AuthCodeFlow
    from .term_utils import formatToken, printTokenStatus, statusConsole

    parser = argparse.ArgumentParser( prog = 'oauth2cli token' )
    parser.add_argument( '--port',
                         type = int,
                         default = 0,
                         help = 'local port of the callback server (default: %s)' % ( DEFAULT_PORT, ) )
    parser.add_argument( '--redirect',
                         type = str,
                         default = '',
                         help = 'page to send the browser to after a successful callback' )
    parser.add_argument( '--callback-path',
                         type = str,
                         default = DEFAULT_CALLBACK_PATH,
                         dest = 'callback_path',
                         help = 'path the provider redirects to (default: "/", any path)' )
    parser.add_argument( '--no-browser',
                         action = 'store_true',
                         dest = 'no_browser',
                         help = 'print URL instead of opening browser' )
    parser.add_argument( '--pkce',
                         action = 'store_true',
                         help = 'protect the code exchange with a PKCE challenge' )
    parser.add_argument( '--timeout',
                         type = float,
                         default = OAUTH_CALLBACK_TIMEOUT,
                         help = 'seconds to wait for the browser callback, 0 to wait forever (default: %s)' % ( OAUTH_CALLBACK_TIMEOUT, ) )
    parser.add_argument( '--scope',
                         type = str,
                         nargs = '+',
                         default = [],
                         dest = 'scopes',
                         help = 'scopes to request, overriding the configured ones' )
    parser.add_argument( '--env', '--environment',
                         type = str,
                         default = None,
                         dest = 'environment',
                         help = 'named environment of the config file' )
    parser.add_argument( '--config',
                         type = str,
                         default = None,
                         help = 'config file to read (default: ~/.oauth2cli)' )
    token_args = parser.parse_args( actionArgs )

    config = loadConfig( environment = token_args.environment,
                         path = token_args.config,
                         port = token_args.port,
                         callback_path = token_args.callback_path,
                         overrides = { 'scopes': token_args.scopes } )

    console = statusConsole()
    ctx = FlowContext( timeout = token_args.timeout if token_args.timeout > 0 else None )
    flow = AuthCodeFlow( config,
                         local_port = token_args.port,
                         redirect = token_args.redirect,
                         callback_path = token_args.callback_path,
                         no_browser = token_args.no_browser,
                         pkce = token_args.pkce )

    if not token_args.no_browser:
        console.print( "Opening browser for authentication..." )
    console.print( "Waiting for the callback on [bold]%s[/bold]" % ( config.redirect_url, ) )

    try:
        tok = flow.run( ctx )
    except KeyboardInterrupt:
        ctx.cancel()
        console.print( "\n[bold red]Login cancelled by user.[/bold red]" )
        sys.exit( 1 )

    printTokenStatus( console, tok )
    print( formatToken( tok ) )

def main():
    args = sys.argv

    # Hack since we don't have access to parsed args here and parsing itself may fail
    debug_mode = False
    if "--debug" in args:
        debug_mode = True
        args.remove("--debug")
        from .utils import set_default_print_debug_fn
        set_default_print_debug_fn(lambda x: print(x, file=sys.stderr))

    try:
        cli(args)
    except Exception as e:
        print("Error:", e, file=sys.stderr)

        if debug_mode:
            print(traceback.format_exc(), file=sys.stderr)

        return 1

if __name__ == "__main__":
    sys.exit(main())
