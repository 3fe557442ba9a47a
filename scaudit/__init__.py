"""Smart contract audit aggregation: static + model findings, scoring, reports."""

__version__ = "0.1.0"
