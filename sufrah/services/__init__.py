"""
                        Services Module

Business logic and external integrations, following the hybrid pattern:
each integration has a Mock (development) and a Real (production)
implementation chosen by ENV_MODE.

Services:
    - senders: Twilio WhatsApp Senders API
    - bot_api: Sufrah bot service admin API
    - notifications: Owner SMS via Twilio
    - onboarding: WhatsApp sender onboarding state machine
"""

