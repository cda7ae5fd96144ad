"""Game domain services: rooms, roles, the phase state machine and timers.

Socket handlers and HTTP routes call into these modules; nothing here reads a
request or knows which transport delivered a message.
"""
