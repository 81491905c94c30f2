"""Tiny terminal UI helpers (prompt_toolkit-based).

Kept apart from the review flow so the prompt can be driven from tests with a
pipe input.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

SKIP_SENTINEL = "[skip: leave flagged]"


def _first_prefix_match(words: Sequence[str], text: str) -> str | None:
    lower = text.strip().lower()
    if not lower:
        return None
    for w in words:
        if w.lower().startswith(lower):
            return w
    return None


def select_product(
    choices: Sequence[str] | Iterable[str],
    *,
    default: str = "",
    session: PromptSession | None = None,
    message: str = "Product for this receipt (Enter to accept, Ctrl+C to skip): ",
) -> str | None:
    """Prompt for one of ``choices``; return it, or ``None`` to skip.

    Matching is case-insensitive and Enter on a unique-enough prefix commits
    the first matching choice. Picking the skip option or pressing Esc/Ctrl+C
    returns ``None``.
    """

    words = list(choices) + [SKIP_SENTINEL]
    canonical = {w.lower(): w for w in words}
    completer = WordCompleter(words, ignore_case=True, match_middle=True, sentence=True)

    kb = KeyBindings()

    @kb.add("escape")
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("c-c", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        elif b.text.strip().lower() not in canonical:
            cand = _first_prefix_match(words, b.text)
            if cand is not None:
                b.text = cand
                b.cursor_position = len(cand)
        b.validate_and_handle()

    class _ChoiceValidator(Validator):
        def validate(self, document) -> None:
            if document.text.strip().lower() not in canonical:
                raise ValidationError(message="Pick a product from the list or the skip option.")

    if session is None:
        sess: PromptSession = PromptSession(key_bindings=kb)
    else:
        sess = PromptSession(
            input=getattr(session, "input", None),
            output=getattr(session, "output", None),
            key_bindings=kb,
        )

    value = sess.prompt(
        message,
        default=default if default in words else "",
        completer=completer,
        validator=_ChoiceValidator(),
        validate_while_typing=False,
        key_bindings=kb,
    )
    if value is None:
        return None
    picked = canonical.get(value.strip().lower(), value)
    return None if picked == SKIP_SENTINEL else picked


__all__ = ["select_product", "SKIP_SENTINEL"]
