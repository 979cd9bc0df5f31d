# utils/context.py

"""
Thread-local request context for audit logging.

Holds the requesting user, client IP and user agent for the lifetime of
one request so that BaseModel.save() and the audit logger can stamp
records without the request being passed through every service call.
"""

from threading import local
import logging

logger = logging.getLogger(__name__)

# Thread-local storage
_thread_locals = local()


def set_request_context(user=None, ip_address=None, user_agent=None, request_path=None):
    """
    Set the current request context for this thread.

    This should be called by middleware at the start of each request.

    Args:
        user: The authenticated user (or None)
        ip_address: Client IP address
        user_agent: Browser user agent string
        request_path: The request path/URL
    """
    _thread_locals.request_context = {
        'user': user if user is not None and getattr(user, 'is_authenticated', False) else None,
        'ip_address': ip_address,
        'user_agent': user_agent or '',
        'request_path': request_path or '',
    }

    logger.debug(f"Set request context: user={user}, ip={ip_address}")


def get_request_context():
    """
    Get the current request context for this thread.

    Returns:
        dict or None: user, ip_address, user_agent, request_path
    """
    return getattr(_thread_locals, 'request_context', None)


def clear_request_context():
    """Clear the request context for this thread."""
    if hasattr(_thread_locals, 'request_context'):
        del _thread_locals.request_context
        logger.debug("Cleared request context")


def get_client_ip(request):
    """
    Extract the client's real IP address from the request.

    Handles X-Forwarded-For header for proxied requests.
    """
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR') or None


class RequestContext:
    """
    Context manager for temporarily setting request context.

    Used by management commands (the side-effect drain) so records written
    outside a request are still stamped.

    Example:
        with RequestContext(request_path='cron:process_payment_side_effects'):
            processor.process_pending()
    """

    def __init__(self, user=None, ip_address=None, user_agent=None, request_path=None):
        self.context = {
            'user': user,
            'ip_address': ip_address,
            'user_agent': user_agent or '',
            'request_path': request_path or '',
        }
        self.previous_context = None

    def __enter__(self):
        self.previous_context = get_request_context()
        _thread_locals.request_context = self.context
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_context:
            _thread_locals.request_context = self.previous_context
        else:
            clear_request_context()
