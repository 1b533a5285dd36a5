"""Rule-driven labeling, filing and forwarding for a local Maildir tree."""

__version__ = "2.1.0"
