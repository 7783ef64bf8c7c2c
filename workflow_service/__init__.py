"""Package marker for the auto-job workflow service.

Clients poll run status over HTTP; the server does no push.
"""

__version__ = "1.0.0"
