"""Voice appointment scheduling backend for Twilio and Ultravox."""

__version__ = "1.0.0"
