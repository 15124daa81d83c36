from setuptools import setup

__version__ = "1.0.0"
__license__ = "Apache v2"

setup( name = 'oauth2cli',
       version = __version__,
       description = 'OAuth2 authorization code flow for local applications',
       license = __license__,
       packages = [ 'oauth2cli' ],
       zip_safe = True,
       python_requires = '>=3.8',
       install_requires = [ 'requests', 'pyyaml', 'pygments', 'rich' ],
       extras_require = {
           'test': [ 'pytest' ],
       },
       long_description = 'Runs an interactive OAuth2 authorization code flow: opens the browser, catches the redirect on a temporary local server and exchanges the code for a token.',
       entry_points = {
           'console_scripts': [
               'oauth2cli=oauth2cli.__main__:main',
           ],
       },
)
