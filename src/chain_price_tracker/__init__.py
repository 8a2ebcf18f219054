"""Chain Price Tracker - price sampling and alerting for tracked chains."""

__version__ = "0.1.0"
