"""Cookie file pass-through for the fetch tool"""
import logging
import os
from typing import Any, Dict, List, Optional

_logger = logging.getLogger("aethel-audio")


def resolve_cookie_file(cookie_file: Optional[str], tag: str = "[Cookies]") -> Optional[str]:
    """
    Return the configured cookie file if it can be used.

    Args:
        cookie_file (Optional[str]): Path from configuration, may be empty
        tag (str): Log prefix of the caller

    Returns:
        Optional[str]: Absolute path of a readable cookie file, or None
    """
    if not cookie_file:
        return None
    path = os.path.abspath(os.path.expanduser(cookie_file))
    if not os.path.isfile(path):
        _logger.warning("%s Cookie file configured but missing path=%s", tag, path)
        return None
    if not os.access(path, os.R_OK):
        _logger.warning("%s Cookie file is not readable path=%s", tag, path)
        return None
    return path


def apply_cookie_options(ydl_opts: Dict[str, Any], cookie_file: Optional[str], tag: str = "[Cookies]") -> Dict[str, Any]:
    """Attach the cookie file to yt-dlp API options, unmodified."""
    path = resolve_cookie_file(cookie_file, tag)
    if path:
        ydl_opts["cookiefile"] = path
        _logger.debug("%s Using cookie file path=%s", tag, path)
    return ydl_opts


def cookie_args(cookie_file: Optional[str], tag: str = "[Cookies]") -> List[str]:
    """Command-line arguments passing the cookie file to the yt-dlp process."""
    path = resolve_cookie_file(cookie_file, tag)
    return ["--cookies", path] if path else []
