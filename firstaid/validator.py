from __future__ import annotations

import re
from typing import Callable, Dict, List, Literal, Mapping, Optional, Set

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}")
CODE_LENGTH = 6
MIN_PASSWORD = 6
MIN_NAME = 2

FormName = Literal["login", "signup", "reset_password", "verification", "delete_account"]


def validate_email(value: str, required_message: str = "Please enter your email address") -> Optional[str]:
    if not value:
        return required_message
    if not EMAIL_RE.fullmatch(value):
        return "Please enter a valid email address"
    return None


def validate_login_password(value: str) -> Optional[str]:
    if not value:
        return "Please enter your password"
    if len(value) < MIN_PASSWORD:
        return "Your password should be at least 6 characters"
    return None


def validate_signup_password(value: str) -> Optional[str]:
    if not value:
        return "Password is required"
    if len(value) < MIN_PASSWORD:
        return "Password must be at least 6 characters"
    if not any(c.isdigit() for c in value):
        return "Password must contain at least one number"
    if not any(c.isupper() for c in value):
        return "Password must contain at least one uppercase letter"
    return None


def validate_confirm_password(password: str, confirm: str) -> Optional[str]:
    if not confirm:
        return "Please confirm your password"
    if confirm != password:
        return "Passwords do not match"
    return None


def validate_name(value: str, label: str) -> Optional[str]:
    if not value:
        return f"{label} is required"
    if len(value) < MIN_NAME:
        return f"{label} is too short"
    return None


def is_valid_code(code: str) -> bool:
    return len(code) == CODE_LENGTH and code.isascii() and code.isdigit()


def validate_code(value: str) -> Optional[str]:
    if is_valid_code(value):
        return None
    return "Enter the 6-digit code"


def _delete_password(value: str) -> Optional[str]:
    return None if value else "Please enter your password"


Rule = Callable[[Mapping[str, str]], Optional[str]]

FORMS: Dict[str, Dict[str, Rule]] = {
    "login": {
        "email": lambda v: validate_email(v.get("email", "")),
        "password": lambda v: validate_login_password(v.get("password", "")),
    },
    "signup": {
        "first_name": lambda v: validate_name(v.get("first_name", ""), "First name"),
        "surname": lambda v: validate_name(v.get("surname", ""), "Surname"),
        "email": lambda v: validate_email(v.get("email", ""), "Email is required"),
        "password": lambda v: validate_signup_password(v.get("password", "")),
        "confirm_password": lambda v: validate_confirm_password(v.get("password", ""), v.get("confirm_password", "")),
    },
    "reset_password": {
        "email": lambda v: validate_email(v.get("email", "")),
    },
    "verification": {
        "code": lambda v: validate_code(v.get("code", "")),
    },
    "delete_account": {
        "password": lambda v: _delete_password(v.get("password", "")),
    },
}


class FormState:
    """Field values for one screen; every rule is re-run on each update.

    ``errors`` covers all fields, ``visible_errors`` only those the user has
    edited so an untouched form does not open covered in messages.
    """

    def __init__(self, form: FormName, **values: str):
        if form not in FORMS:
            raise ValueError(f"unknown form: {form}")
        self.form = form
        self.rules = FORMS[form]
        unknown = set(values) - set(self.rules)
        if unknown:
            raise ValueError(f"{form} has no field(s): {sorted(unknown)}")
        self.values: Dict[str, str] = {f: "" for f in self.rules}
        self.values.update(values)
        self.touched: Set[str] = set(values)
        self.errors: Dict[str, Optional[str]] = {}
        self._revalidate()

    @property
    def fields(self) -> List[str]:
        return list(self.rules)

    def update(self, field: str, value: str) -> Optional[str]:
        if field not in self.rules:
            raise KeyError(f"{self.form} has no field {field}")
        self.values[field] = value
        self.touched.add(field)
        self._revalidate()
        return self.errors[field]

    def _revalidate(self) -> None:
        self.errors = {f: rule(self.values) for f, rule in self.rules.items()}

    @property
    def visible_errors(self) -> Dict[str, str]:
        return {f: e for f, e in self.errors.items() if e and f in self.touched}

    @property
    def is_valid(self) -> bool:
        return all(e is None for e in self.errors.values())
