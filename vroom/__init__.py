"""Profile call-tree analysis: frame classification, function metrics and issue detection."""

__version__ = "0.1.0"