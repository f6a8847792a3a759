"""
Application monitoring and error tracking with Sentry
"""
import os
import re
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.asyncio import AsyncioIntegration

REDACTED = "[redacted]"

# Patient and beneficiary fields, in our schemas and in TISS XML tags
SENSITIVE_KEYS = {
    "cpf",
    "full_name",
    "patient_name",
    "card_number",
    "authorization_password",
    "raw_content",
    "file_content",
    "numerocarteira",
    "nomebeneficiario",
    "senhaautorizacao",
}

CPF_PATTERN = re.compile(r"\b\d{3}\.\d{3}\.\d{3}-\d{2}\b")


def _scrub(value):
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).split(":")[-1].lower() in SENSITIVE_KEYS else _scrub(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_scrub(item) for item in value]
    if isinstance(value, str):
        return CPF_PATTERN.sub(REDACTED, value)
    return value


def scrub_event(event, hint):
    """before_send hook: drop patient identifiers from events before they leave the clinic"""
    return _scrub(event)


def init_sentry():
    """
    Initialize Sentry for error tracking and performance monitoring
    """
    sentry_dsn = os.getenv("SENTRY_DSN")
    sentry_environment = os.getenv("SENTRY_ENVIRONMENT", os.getenv("ENVIRONMENT", "development"))

    if sentry_dsn:
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=sentry_environment,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
                AsyncioIntegration(),
            ],
            traces_sample_rate=1.0 if sentry_environment == "development" else 0.1,
            release=os.getenv("APP_VERSION", "1.0.0"),
            send_default_pii=False,
            before_send=scrub_event,
        )
        return True
    return False
