"""
handlers/ - Presentation Layer
================================
Telegram bot handlers. Each handler receives a command from the owner of
a recurring series, delegates to the appropriate Service, and sends the
response back. No scheduling logic lives here.
"""
