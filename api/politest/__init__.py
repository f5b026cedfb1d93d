"""politest: IAM policy test scenarios evaluated against the AWS policy simulator."""

__version__ = "0.1.0"
