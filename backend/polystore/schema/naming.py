"""
Naming helpers shared by the resolver, the error catalog and the repositories.

Entity and column names arrive in whatever case the model author used
(``invoice_line``, ``InvoiceLine``, ``invoice-line``). Derived names such as
accessor methods, error keys and stream names are built from these helpers so
that one entity always produces the same identifiers.
"""

from __future__ import annotations

import re

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SEPARATORS = re.compile(r"[-_\s]+(.)?")


def upper_first(value: str) -> str:
    if not value:
        return ""
    return value[0].upper() + value[1:]


def camel_case(value: str) -> str:
    """Convert ``invoice_line`` / ``invoice-line`` / ``InvoiceLine`` to ``invoiceLine``."""
    if not value:
        return ""
    result = _SEPARATORS.sub(lambda m: m.group(1).upper() if m.group(1) else "", value)
    return result[0].lower() + result[1:] if result else ""


def pascal_case(value: str) -> str:
    return upper_first(camel_case(value))


def snake_case(value: str) -> str:
    result = _CAMEL_BOUNDARY.sub(r"\1_\2", value)
    result = re.sub(r"\s+", "_", result)
    result = re.sub(r"-+", "_", result)
    return result.lower()


def kebab_case(value: str) -> str:
    result = _CAMEL_BOUNDARY.sub(r"\1-\2", value)
    result = re.sub(r"\s+", "-", result)
    result = re.sub(r"_+", "-", result)
    return result.lower()


def sentence_case(value: str) -> str:
    words = re.split(r"(?=[A-Z])", value)
    lowered = " ".join(re.split(r"[-_\s]+", " ".join(words))).strip().lower()
    lowered = re.sub(r"\s+", " ", lowered)
    return upper_first(lowered)


def singularize(word: str) -> str:
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("s"):
        return word[:-1]
    return word


def pluralize(word: str) -> str:
    if word.endswith("y"):
        if len(word) > 1 and word[-2].lower() in "aeiou":
            return word + "s"
        return word[:-1] + "ies"
    if not word.endswith("s"):
        return word + "s"
    return word


def constant_case(value: str) -> str:
    """``invoiceLine`` -> ``INVOICE_LINE``."""
    return snake_case(camel_case(value)).upper()
