"""chatwire: stream a provider chat to the terminal and any number of observers."""

__version__ = "0.3.0"
