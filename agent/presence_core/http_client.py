"""
Shared HTTP session: pooled connections, retry on gateway errors,
and a CA bundle that still resolves inside frozen builds.

Other modules always go through `http_client.http` (never a captured
reference) so reset_session() and test doubles take effect everywhere.
"""

import os
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .constants import AGENT_VERSION

# Gateway errors are usually a proxy restarting; everything else is final
RETRY_STATUSES = (502, 503, 504)


def _build_retry(total, backoff):
    return Retry(
        total=total,
        connect=total,
        read=1,                         # a read timeout may mean the POST was applied
        backoff_factor=backoff,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset({"HEAD", "GET", "POST"}),
        respect_retry_after_header=True,
        raise_on_status=False,
    )


def _ca_bundle_candidates():
    yield os.path.join(os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                       "ClassroomPresence", "cacert.pem")
    for var in ("REQUESTS_CA_BUNDLE", "SSL_CERT_FILE"):
        if os.environ.get(var):
            yield os.environ[var]


def _resolve_verify():
    """
    First existing bundle among: data-dir copy, REQUESTS_CA_BUNDLE /
    SSL_CERT_FILE, certifi. True (requests' default store) if none.
    """
    for path in _ca_bundle_candidates():
        if os.path.isfile(path):
            return path
    try:
        import certifi
        return certifi.where()
    except ImportError:
        return True


def create_session(retries=3, backoff=1):
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=4,
                          max_retries=_build_retry(retries, backoff))
    for prefix in ("http://", "https://"):
        session.mount(prefix, adapter)
    session.verify = _resolve_verify()
    session.headers.update({
        "User-Agent": f"classroom-presence/{AGENT_VERSION}",
        "Accept": "application/json",
    })
    return session


def reset_session(session):
    """Drop pooled (possibly stale) connections and start over."""
    try:
        session.close()
    except Exception:
        pass
    return create_session()


http = create_session()
