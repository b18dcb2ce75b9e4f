import re

EMAIL_REGEX = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')
WHITESPACE_REGEX = re.compile(r'\s+')


def normalize_name(value: str | None) -> str:
    if not value:
        return ''
    return WHITESPACE_REGEX.sub(' ', value).strip().lower()


def normalize_email(value: str | None) -> str:
    if not value:
        return ''
    return value.strip().lower()


def is_valid_email(email: str | None) -> bool:
    if not email:
        return False
    return bool(EMAIL_REGEX.match(email.strip()))
