"""Validation rules for account and profile fields."""

from __future__ import annotations

import re

from chatsync.domain.errors import InvalidArgument

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_REGEX = re.compile(r"^\+?[0-9][0-9 \-]{3,19}$")
PASSWORD_MIN_LEN = 6
PSEUDO_MIN_LEN = 2
PSEUDO_MAX_LEN = 30
FULLNAME_MAX_LEN = 80


def normalise_email(value: str) -> str:
	email = str(value or "").strip().lower()
	if not EMAIL_REGEX.match(email):
		raise InvalidArgument("email_invalid")
	return email


def normalise_pseudo(value: str) -> str:
	pseudo = str(value or "").strip()
	if not PSEUDO_MIN_LEN <= len(pseudo) <= PSEUDO_MAX_LEN:
		raise InvalidArgument("pseudo_invalid")
	return pseudo


def normalise_fullname(value: str) -> str:
	fullname = " ".join(str(value or "").split())
	if len(fullname) > FULLNAME_MAX_LEN:
		raise InvalidArgument("fullname_too_long")
	return fullname


def normalise_phone(value: str) -> str:
	phone = str(value or "").strip()
	if phone and not PHONE_REGEX.match(phone):
		raise InvalidArgument("phone_invalid")
	return phone


def guard_password(value: str) -> str:
	password = str(value or "")
	if len(password) < PASSWORD_MIN_LEN:
		raise InvalidArgument("password_too_short")
	return password
