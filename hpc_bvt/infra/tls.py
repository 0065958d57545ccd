"""
TLS trust options for the HTTP and WebSocket transports.

Certificate validation is on unless the caller explicitly opts out, which is
meant only for test endpoints with self-signed certificates.
"""

import logging
import ssl

logger = logging.getLogger(__name__)


def client_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """
    Build the SSL context used by one run.

    Args:
        verify: Validate the server certificate chain and hostname

    Returns:
        ssl.SSLContext: Context to pass to httpx and websockets
    """
    context = ssl.create_default_context()
    if not verify:
        logger.warning("TLS certificate validation is DISABLED for this run (insecure mode)")
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context
