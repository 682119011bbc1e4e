"""Social network core: follow and membership lifecycles, notification fanout, content visibility."""

__version__ = "0.1.0"
