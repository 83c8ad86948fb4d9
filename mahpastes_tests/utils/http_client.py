"""HTTP client shared by all readiness probes."""

import requests

_session = None


def get_session() -> requests.Session:
    """Get a session object for requests to local application instances.

    Proxy settings from the environment are ignored, instances always listen on the local host.
    """
    global _session  # noqa: PLW0603

    if _session is None:
        _session = requests.Session()
        _session.trust_env = False
    return _session


def close_session() -> None:
    """Close the session object, if any."""
    global _session  # noqa: PLW0603

    if _session is not None:
        _session.close()
        _session = None
