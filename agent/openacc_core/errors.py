"""
Exception hierarchy shared by every module.

  AuthError        → identity provider / registration failure (fatal at startup)
  EntitlementError → account has no active subscription (fatal)
  NetworkError     → transport failure or unusable response
  TamperError      → service file altered (fatal, identity already signed off)
  CancelledError   → cooperative shutdown in progress (not a failure)
  ImageError       → capture failure for one display
  DecodeError      → captured frame could not be turned into an image
"""


class AgentError(Exception):
    """Base class for all agent errors."""


class AuthError(AgentError):
    pass


class EntitlementError(AgentError):
    pass


class NetworkError(AgentError):
    pass


class TamperError(AgentError):
    pass


class CancelledError(AgentError):
    """Raised at a cancellation checkpoint once the token is set."""


class ImageError(AgentError):
    pass


class DecodeError(ImageError):
    pass
