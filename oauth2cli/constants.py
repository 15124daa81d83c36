import os

# Default port for the local callback server, used when the caller passes 0.
DEFAULT_PORT = 4321

# The callback server only ever listens on the loopback interface.
DEFAULT_HOST = '127.0.0.1'

# A callback path of "/" matches every request path.
DEFAULT_CALLBACK_PATH = '/'

# Path to the configuration file. Can be overriden for tests.
CONFIG_FILE_PATH = os.path.expanduser( '~/.oauth2cli' )

# Environment variables read by the configuration loader.
ENV_VAR_PREFIX = 'OAUTH2CLI_'
CONFIG_FILE_ENV_VAR = 'OAUTH2CLI_CONFIG_FILE'
CONFIG_ENV_NAME_ENV_VAR = 'OAUTH2CLI_ENV'

# Default deadline applied by the CLI while waiting for the browser callback.
OAUTH_CALLBACK_TIMEOUT = 300  # 5 minutes

# How often the shutdown supervisor and the serve loop wake up (seconds).
SUPERVISOR_POLL_INTERVAL = 0.1

# Maximum time a graceful shutdown may take before it is reported as failed (seconds).
SHUTDOWN_GRACE = 5

# Socket timeout for a single callback connection, kept below SHUTDOWN_GRACE (seconds).
REQUEST_READ_TIMEOUT = 4

# Default timeout of the code exchange request when the flow has no deadline (seconds).
TOKEN_REQUEST_TIMEOUT = 30
