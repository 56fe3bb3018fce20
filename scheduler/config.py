import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./scheduler.db")

# Hosted auth - access tokens are HS256 JWTs signed with the project secret
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
if not SUPABASE_JWT_SECRET:
    import warnings

    warnings.warn(
        "SUPABASE_JWT_SECRET not set! Using insecure default - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    SUPABASE_JWT_SECRET = "INSECURE-DEV-SECRET-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")

# Emails that always get admin access, in addition to rows in admin_users
ADMIN_EMAILS = [
    email.strip().lower()
    for email in os.getenv("ADMIN_EMAILS", "").split(",")
    if email.strip()
]

# Frontend base URL for links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Moonlit Scheduling <noreply@trymoonlit.com>")
# Internal mailbox that receives a copy of every booking
BOOKING_CONTACT_EMAIL = os.getenv("BOOKING_CONTACT_EMAIL")

# IntakeQ / PracticeQ EMR
INTAKEQ_API_KEY = os.getenv("INTAKEQ_API_KEY")
INTAKEQ_BASE_URL = os.getenv("INTAKEQ_BASE_URL", "https://intakeq.com/api/v1")
INTAKEQ_LOCATION_ID = os.getenv("INTAKEQ_LOCATION_ID", "4")
INTAKEQ_MAX_RETRIES = int(os.getenv("INTAKEQ_MAX_RETRIES", "3"))
PRACTICEQ_ENRICH_ENABLED = os.getenv("PRACTICEQ_ENRICH_ENABLED", "false").lower() == "true"

# Scheduling defaults
CLINIC_TIMEZONE = os.getenv("CLINIC_TIMEZONE", "America/Denver")
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "60"))
AVAILABILITY_CACHE_DAYS = int(os.getenv("AVAILABILITY_CACHE_DAYS", "30"))
MAX_AVAILABILITY_RANGE_DAYS = int(os.getenv("MAX_AVAILABILITY_RANGE_DAYS", "90"))
# Last link of the service instance fallback chain
DEFAULT_SERVICE_INSTANCE_ID = os.getenv("DEFAULT_SERVICE_INSTANCE_ID")

# Feature flags for Redis-backed helpers
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
CACHE_ENABLED = os.getenv("CACHE_ENABLED", "true").lower() == "true"
# Queue arq jobs (cache refreshes) from request handlers
BACKGROUND_JOBS_ENABLED = os.getenv("BACKGROUND_JOBS_ENABLED", "true").lower() == "true"
BOOKABILITY_CACHE_TTL = int(os.getenv("BOOKABILITY_CACHE_TTL", "300"))
