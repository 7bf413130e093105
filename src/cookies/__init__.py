from .cookiefile import (
    apply_cookie_options,
    cookie_args,
    resolve_cookie_file,
)

__all__ = [
    "apply_cookie_options",
    "cookie_args",
    "resolve_cookie_file",
]
