"""castwatch: threshold alerting for die-casting machines fed by a prediction API."""

__version__ = "0.1.0"
