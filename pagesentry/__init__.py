"""PageSentry: real-time sign-in page phishing classification."""

__version__ = "0.4.0"
