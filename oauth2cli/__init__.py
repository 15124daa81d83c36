"""oauth2cli: OAuth2 authorization code flow for local applications"""

__version__ = "1.0.0"
__license__ = "Apache v2"

from .constants import DEFAULT_PORT
from .context import FlowContext
from .oauth import OAuth2Config, OAuth2Error, Token
from .flow import AuthCodeFlow, token
from .utils import OAuth2CliException
from .utils import ConfigError
from .utils import FlowError, BrowserLaunchError, ListenerBindError, InvalidStateError, MissingCodeError, ListenerShutdownError, TokenExchangeError, CallbackTimeoutError, FlowCancelledError
from .utils import set_default_print_debug_fn
