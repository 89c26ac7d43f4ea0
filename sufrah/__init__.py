"""
                Sufrah WhatsApp Onboarding Backend

Backend for the Sufrah restaurant dashboard that registers a restaurant's
WhatsApp sender with Twilio and tracks its onboarding status.

Author: Sufrah Engineering
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Sufrah Engineering"
