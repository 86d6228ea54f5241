"""Miscellanea."""
import importlib
from collections.abc import Callable, Mapping
from typing import Any


def get_callable(
    callable_str: str, base_package: str | None = None
) -> Callable:
    """Get a callable function / class constructor from a string of the form
    `package.subpackage.module:callable`.

    >>> type(get_callable('os.path:basename')).__name__
    'function'

    >>> type(get_callable('basename', 'os.path')).__name__
    'function'
    """
    if ":" in callable_str:
        module_name, callable_name = callable_str.split(":", 1)
        module = importlib.import_module(module_name, base_package)
    elif base_package:
        module = importlib.import_module(base_package)
        callable_name = callable_str
    else:
        raise ValueError(
            "Expecting base_package to be set if only class name is provided"
        )

    return getattr(module, callable_name)  # type: ignore[no-any-return]


def safe_filename(original_filename: str) -> str:
    """Return a filename safe to use in HTTP headers, formed from the
    given original filename.

    >>> safe_filename("example(1).txt")
    'example1.txt'

    >>> safe_filename("widgets_v1.2.3+linux amd64.tar.gz")
    'widgets_v1.2.3linuxamd64.tar.gz'
    """
    valid_chars = (
        "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_."
    )
    return "".join(c for c in original_filename if c in valid_chars)


def split_listen_address(address: str) -> tuple[str, int]:
    """Split a `host:port` listen address; an empty host means all
    interfaces.

    >>> split_listen_address("localhost:9443")
    ('localhost', 9443)

    >>> split_listen_address(":8080")
    ('', 8080)
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address: {address!r}")
    return host.strip("[]"), int(port)


def join_listen_address(host: str, port: int) -> str:
    """Inverse of split_listen_address, bracketing IPv6 hosts.

    >>> join_listen_address("::1", 9443)
    '[::1]:9443'

    >>> join_listen_address("localhost", 9443)
    'localhost:9443'
    """
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}"


def advertised_address(address: str) -> str:
    """Address other processes can reach a listen address at.

    >>> advertised_address(":9443")
    'localhost:9443'

    >>> advertised_address("127.0.0.1:9443")
    '127.0.0.1:9443'
    """
    if address.startswith(":"):
        return f"localhost{address}"
    return address


def as_dict(value: Any) -> dict[str, Any]:
    """Plain dict copy of a (possibly nested config) mapping."""
    return {
        k: as_dict(v) if isinstance(v, Mapping) else v
        for k, v in dict(value).items()
    }
