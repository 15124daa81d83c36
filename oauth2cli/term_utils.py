import json
import os
import sys
import time

from pygments import formatters, highlight, lexers
from rich.console import Console


def colorsDisabled() -> bool:
    '''NO_COLOR or a dumb terminal ask for plain output whatever the stream.'''
    return "NO_COLOR" in os.environ or os.environ.get("TERM", "") == "dumb"

def useColors(stream=None) -> bool:
    """
    Whether ANSI colors should be written to a stream.

    :param stream: The stream the output goes to, defaults to sys.stdout.
    :return: True only for a terminal when colors are not disabled.
    """
    if stream is None:
        stream = sys.stdout
    return stream.isatty() and not colorsDisabled()

def formatToken(tok, use_colors: bool = None, indent: int = 2) -> str:
    """
    Render a token as the JSON document printed by "oauth2cli token".

    Keys are sorted so the output is stable, and highlighted with pygments
    only when stdout is a terminal, so the document can be piped to jq.

    :param tok: The token returned by the flow.
    :param use_colors: Force colors on or off, None to detect them on stdout.
    :param indent: The number of spaces to use for indentation.
    :return: The JSON document.
    """
    document = json.dumps(tok.to_dict(), sort_keys=True, indent=indent)
    if use_colors is None:
        use_colors = useColors()
    if not use_colors:
        return document
    return highlight(document, lexers.JsonLexer(), formatters.TerminalFormatter()).rstrip("\n")

def statusConsole() -> Console:
    """
    Console for status messages.

    Status goes to stderr so that stdout only carries the command's result.
    """
    return Console(stderr=True, no_color=colorsDisabled())

def formatExpiry(expiry: int = None, now: float = None) -> str:
    """
    Human readable time left on a token, for example "expires in 1h 5m".

    :param expiry: Unix timestamp of the expiry, None if the provider did not say.
    :param now: Current time, defaults to time.time().
    :return: The formatted string.
    """
    if expiry is None:
        return "no expiry"

    if now is None:
        now = time.time()
    left = int(expiry - now)
    if left <= 0:
        return "expired"

    hours, rest = divmod(left, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"expires in {hours}h {minutes}m"
    if minutes:
        return f"expires in {minutes}m {seconds}s"
    return f"expires in {seconds}s"

def printTokenStatus(console: Console, tok) -> None:
    """
    Print a one line summary of a token, without any of its secrets.

    :param console: Console to print to.
    :param tok: The token returned by the flow.
    """
    parts = [tok.token_type, formatExpiry(tok.expiry)]
    if tok.refresh_token:
        parts.append("refreshable")
    scope = tok.extra("scope")
    if scope:
        parts.append(f"scope: {scope}")
    console.print("[bold green]Authentication successful.[/bold green] %s" % (", ".join(parts),))
