"""
Booking domain

Creates, reschedules and cancels appointments. Every booking is checked
against bookability and provider conflicts, then synced to the EMR.
"""
