"""Key bindings and help text for a ticker session."""

from __future__ import annotations

from dataclasses import dataclass, field

# Raw control characters as they arrive from a terminal in raw mode
_CONTROL_NAMES = {
    "\x03": "ctrl+c",
    "\x04": "ctrl+d",
    "\x1b": "esc",
    "\r": "enter",
    "\n": "enter",
}


def key_name(raw: str) -> str:
    """Normalize a raw terminal character to a binding name ("q", "ctrl+c", ...)."""
    return _CONTROL_NAMES.get(raw, raw)


@dataclass(frozen=True)
class Binding:
    keys: tuple[str, ...]
    help_key: str
    help_desc: str

    def matches(self, key: str) -> bool:
        return key in self.keys


@dataclass(frozen=True)
class KeyMap:
    quit: Binding = field(default_factory=lambda: Binding(("q", "ctrl+c"), "q", "quit"))
    help: Binding = field(default_factory=lambda: Binding(("?",), "?", "toggle help"))

    def short_help(self) -> str:
        return " • ".join(f"{b.help_key} {b.help_desc}" for b in (self.quit, self.help))

    def full_help(self) -> str:
        rows = []
        for b in (self.quit, self.help):
            rows.append(f"{' / '.join(b.keys):<10}  {b.help_desc}")
        return "\n".join(rows)


DEFAULT_KEYMAP = KeyMap()
