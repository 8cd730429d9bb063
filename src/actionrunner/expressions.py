# expressions.py
# ${{ context.name }} handling. Only two contexts are understood:
#   matrix.*   substituted when a job is bound to a matrix combination
#   secrets.*  substituted right before a step runs
# Any other context is left untouched.
from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Set

from .errors import ValidationError

EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][\w-]*)\.([A-Za-z_][\w-]*)\s*\}\}")


def refs(text: str | None, context: str) -> Set[str]:
    """Names referenced as ${{ <context>.<name> }} in text."""
    if not text:
        return set()
    return {name for ctx, name in EXPR.findall(text) if ctx == context}


def refs_in(values: Iterable[str | None], context: str) -> Set[str]:
    out: Set[str] = set()
    for v in values:
        out |= refs(v, context)
    return out


def format_value(value: Any) -> str:
    # YAML spelling for booleans, so `${{ matrix.debug }}` renders as "true"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render(text: str | None, context: str, values: Mapping[str, Any]) -> str | None:
    """
    Substitute ${{ <context>.<name> }} with values[name].

    A reference to a name missing from values raises ValidationError.
    """
    if text is None:
        return None

    def _sub(m: re.Match) -> str:
        ctx, name = m.group(1), m.group(2)
        if ctx != context:
            return m.group(0)
        if name not in values:
            raise ValidationError(f"Unknown reference ${{{{ {ctx}.{name} }}}}")
        return format_value(values[name])

    return EXPR.sub(_sub, text)


def secret_expr(name: str) -> str:
    return "${{ secrets.%s }}" % name
