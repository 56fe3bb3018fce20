"""
Availability domain

Merges per-provider slot caches into patient-facing availability, filtered
by bookability for the requested payer and date.
"""
