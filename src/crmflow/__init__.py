"""crmflow — CRM automation workflows executed from a persisted node graph."""

__version__ = "0.4.0"
