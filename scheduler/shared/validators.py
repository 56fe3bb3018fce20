"""Shared validation utilities"""

import re
from datetime import date
from typing import Optional


def phone_digits(phone: Optional[str]) -> str:
    """Digits only, without a leading US country code"""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def validate_us_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize US phone number to E.164 format.

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    digits = phone_digits(phone)
    if len(digits) != 10:
        raise ValueError("Phone number must be 10 digits for US numbers")

    return f"+1{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format and lowercase it.

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()
    if not re.match(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", email):
        raise ValueError("Invalid email format")

    return email


def validate_date_range(start: Optional[date], end: Optional[date], label: str = "date") -> None:
    """Raise ValueError when end precedes start"""
    if start and end and end < start:
        raise ValueError(f"end {label} must be on or after start {label}")
