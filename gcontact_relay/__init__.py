"""
gcontact_relay - Two-party Google Contacts relay

Reconciles the contacts of two Google accounts through a shared, polled
buffer without any direct channel between them.
"""

__version__ = "0.1.0"
