"""
Best-effort repair of malformed structured text.

Model output is often cut off at ``max_tokens`` or written with Python-style
literals. These helpers patch the most common problems before a strict
``json.loads``. They never raise: anything they cannot fix is left for the
strict parse to reject.
"""

from dataclasses import dataclass

_CLOSERS = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class RepairResult:
    """Corrected text plus whether any correction was applied."""

    text: str
    fixed: bool


def _toggles_quote(text: str, i: int) -> bool:
    """A double quote toggles string state unless an unescaped backslash precedes it."""
    if text[i] != '"':
        return False
    backslashes = 0
    j = i - 1
    while j >= 0 and text[j] == "\\":
        backslashes += 1
        j -= 1
    return backslashes % 2 == 0


def _scan(text: str) -> tuple[str, list[str], bool]:
    """
    Collect the first top-level bracketed structure in ``text``.

    Returns:
        Tuple of (collected text, brackets still open, inside a string).
    """
    stack: list[str] = []
    out: list[str] = []
    in_string = False
    started = False

    for i, char in enumerate(text):
        if _toggles_quote(text, i):
            in_string = not in_string
        elif not in_string:
            if char in _CLOSERS:
                started = True
                stack.append(char)
            elif char in ("}", "]") and started:
                if stack:
                    stack.pop()
                if not stack:
                    out.append(char)
                    break

        if started:
            out.append(char)

    return "".join(out), stack, in_string


def balance_brackets(fragment: str) -> RepairResult:
    """
    Keep the first top-level JSON structure and close it if truncated.

    Text before the first ``{``/``[`` and after its matching close is
    dropped. A truncated structure has trailing commas trimmed, an open
    string closed, and every open bracket closed in reverse order.

    Example:
        >>> balance_brackets('{"a": 1, "b": [1, 2')
        RepairResult(text='{"a": 1, "b": [1, 2]}', fixed=True)
    """
    if not fragment:
        return RepairResult(text="", fixed=False)

    collected, stack, in_string = _scan(fragment)
    if not collected:
        return RepairResult(text=fragment.strip(), fixed=False)
    if not stack:
        return RepairResult(text=collected, fixed=False)

    if in_string:
        fixed = collected + '"'
    else:
        fixed = collected.rstrip(", \t\r\n")
    fixed += "".join(_CLOSERS[b] for b in reversed(stack))
    return RepairResult(text=fixed, fixed=True)


def fix_bools(fragment: str) -> RepairResult:
    """
    Lower-case ``True``/``False`` literals that appear outside strings.

    Models trained on a lot of Python tend to capitalise booleans.
    """
    out: list[str] = []
    in_string = False
    modified = False
    i = 0
    n = len(fragment)

    while i < n:
        if _toggles_quote(fragment, i):
            in_string = not in_string
        if not in_string:
            if fragment.startswith("True", i):
                out.append("true")
                modified = True
                i += 4
                continue
            if fragment.startswith("False", i):
                out.append("false")
                modified = True
                i += 5
                continue
        out.append(fragment[i])
        i += 1

    return RepairResult(text="".join(out), fixed=modified)
