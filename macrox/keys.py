"""
Key Canonicalizer
Maps physical input ids (KeyQ, Digit1, ControlLeft, MouseButton1, ...) to
layout-independent canonical ids, and canonical ids to per-layout labels.

Canonical ids are what macros store: "Q", "1", "CTRL", "ALTGR", "NUMPAD1",
"MOUSE_LEFT". Labels are what the active layout prints on the key cap.
Lookups never fail: unknown ids degrade to the cleaned raw id.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple, Union
from enum import Enum
import re
import string

from utils.logger import log


UNASSIGNED = "UNASSIGNED"


# ==================== ENUMS ====================

class KeyboardLayout(Enum):
    QWERTY = "QWERTY"
    AZERTY = "AZERTY"
    QWERTZ = "QWERTZ"

    @staticmethod
    def parse(value: Union['KeyboardLayout', str, None]) -> 'KeyboardLayout':
        """Accept an enum member or a layout name (case-insensitive)"""
        if isinstance(value, KeyboardLayout):
            return value
        try:
            return KeyboardLayout(str(value).strip().upper())
        except ValueError:
            log(f"[KEYS] Unknown layout {value!r}, falling back to {DEFAULT_LAYOUT.value}")
            return DEFAULT_LAYOUT


DEFAULT_LAYOUT = KeyboardLayout.AZERTY


class DeviceType(Enum):
    KEYBOARD = "keyboard"
    MOUSE = "mouse"


class MouseButton(Enum):
    LEFT = "left"
    RIGHT = "right"
    MIDDLE = "middle"
    BACK = "back"
    FORWARD = "forward"


# ==================== LAYOUT TABLES ====================

_LAYOUT_ORDER = (KeyboardLayout.QWERTY, KeyboardLayout.AZERTY, KeyboardLayout.QWERTZ)

# Keys whose printed glyph depends on the layout: (QWERTY, AZERTY, QWERTZ)
_LAYOUT_KEYS: Dict[str, Tuple[str, str, str]] = {
    'Backquote': ('`', '²', '^'),
    'Minus': ('-', ')', 'ß'),
    'Equal': ('=', '=', '´'),
    'KeyQ': ('Q', 'A', 'Q'),
    'KeyW': ('W', 'Z', 'W'),
    'KeyY': ('Y', 'Y', 'Z'),
    'KeyA': ('A', 'Q', 'A'),
    'KeyZ': ('Z', 'W', 'Y'),
    'KeyM': ('M', ',', 'M'),
    'BracketLeft': ('[', '^', 'Ü'),
    'BracketRight': (']', '$', '+'),
    'Semicolon': (';', 'M', 'Ö'),
    'Quote': ("'", 'ù', 'Ä'),
    'Backslash': ('\\', '*', '#'),
    'IntlBackslash': ('<', '<', '<'),
    'Comma': (',', ';', ','),
    'Period': ('.', ':', '.'),
    'Slash': ('/', '!', '-'),
}

for _c in string.ascii_uppercase:
    _LAYOUT_KEYS.setdefault(f'Key{_c}', (_c, _c, _c))
for _d in string.digits:
    _LAYOUT_KEYS[f'Digit{_d}'] = (_d, _d, _d)

# Keys printed the same on every layout
_FIXED_LABELS: Dict[str, str] = {
    'Escape': 'Esc',
    'Tab': '↹',
    'CapsLock': '⇪',
    'Backspace': '⌫',
    'Enter': '↵',
    'Space': 'Space',
    'ShiftLeft': '⇧',
    'ShiftRight': '⇧',
    'ControlLeft': 'Ctrl',
    'ControlRight': 'Ctrl',
    'AltLeft': 'Alt',
    'AltRight': 'AltGr',
    'MetaLeft': 'Win',
    'MetaRight': 'Win',
    'ContextMenu': 'Menu',
    'Insert': 'Ins',
    'Delete': 'Del',
    'Home': 'Home',
    'End': 'End',
    'PageUp': 'PgUp',
    'PageDown': 'PgDn',
    'ArrowUp': '↑',
    'ArrowDown': '↓',
    'ArrowLeft': '←',
    'ArrowRight': '→',
    'PrintScreen': 'PrtSc',
    'ScrollLock': 'ScrLk',
    'Pause': 'Pause',
    'NumLock': 'NumLk',
    'NumpadAdd': 'Num +',
    'NumpadSubtract': 'Num -',
    'NumpadMultiply': 'Num *',
    'NumpadDivide': 'Num /',
    'NumpadDecimal': 'Num .',
    'NumpadEnter': 'Num ↵',
    'MouseLeft': 'LMB',
    'MouseRight': 'RMB',
    'MouseMiddle': 'MMB',
    'MouseBack': 'Mouse 4',
    'MouseForward': 'Mouse 5',
}

for _n in range(1, 25):
    _FIXED_LABELS[f'F{_n}'] = f'F{_n}'
for _d in string.digits:
    _FIXED_LABELS[f'Numpad{_d}'] = f'Num {_d}'


# Every physical id the tables know about, in lookup-preference order
PHYSICAL_IDS: Tuple[str, ...] = tuple(_LAYOUT_KEYS) + tuple(_FIXED_LABELS)


# ==================== CANONICAL FORMS ====================

MOUSE_TRIGGER_KEYS: Dict[MouseButton, str] = {
    MouseButton.LEFT: "MOUSE_LEFT",
    MouseButton.RIGHT: "MOUSE_RIGHT",
    MouseButton.MIDDLE: "MOUSE_MIDDLE",
    MouseButton.BACK: "MOUSE_BACK",
    MouseButton.FORWARD: "MOUSE_FORWARD",
}

MODIFIER_KEYS = frozenset({"CTRL", "SHIFT", "ALT", "ALTGR", "WIN"})

# Platform button index -> button (browser/rdev order, index 1 is the wheel)
_BUTTON_INDEX = {
    0: MouseButton.LEFT,
    1: MouseButton.MIDDLE,
    2: MouseButton.RIGHT,
    3: MouseButton.BACK,
    4: MouseButton.FORWARD,
}

# Upper-cased device/legacy names -> canonical id
_SYNONYMS: Dict[str, str] = {
    # Modifiers (side is not stored)
    'CONTROLLEFT': 'CTRL', 'CONTROLRIGHT': 'CTRL', 'CONTROL': 'CTRL',
    'CTRL_L': 'CTRL', 'CTRL_R': 'CTRL', 'LCTRL': 'CTRL', 'RCTRL': 'CTRL',
    'SHIFTLEFT': 'SHIFT', 'SHIFTRIGHT': 'SHIFT', 'SHIFT_L': 'SHIFT', 'SHIFT_R': 'SHIFT',
    'LSHIFT': 'SHIFT', 'RSHIFT': 'SHIFT',
    'ALTLEFT': 'ALT', 'ALT_L': 'ALT', 'LALT': 'ALT',
    'ALTRIGHT': 'ALTGR', 'ALT_R': 'ALTGR', 'ALT_GR': 'ALTGR', 'ALTGRAPH': 'ALTGR', 'RALT': 'ALTGR',
    'METALEFT': 'WIN', 'METARIGHT': 'WIN', 'META': 'WIN', 'OSLEFT': 'WIN', 'OSRIGHT': 'WIN',
    'CMD': 'WIN', 'CMD_L': 'WIN', 'CMD_R': 'WIN', 'SUPER': 'WIN', 'LWIN': 'WIN', 'RWIN': 'WIN',
    # Named keys
    'RETURN': 'ENTER', 'ESCAPE': 'ESC', 'SPACEBAR': 'SPACE',
    'CONTEXTMENU': 'MENU', 'APPS': 'MENU',
    'UP': 'ARROWUP', 'DOWN': 'ARROWDOWN', 'LEFT': 'ARROWLEFT', 'RIGHT': 'ARROWRIGHT',
    'UPARROW': 'ARROWUP', 'DOWNARROW': 'ARROWDOWN', 'LEFTARROW': 'ARROWLEFT', 'RIGHTARROW': 'ARROWRIGHT',
    'PAGE_UP': 'PAGEUP', 'PGUP': 'PAGEUP', 'PAGE_DOWN': 'PAGEDOWN', 'PGDN': 'PAGEDOWN',
    'DEL': 'DELETE', 'INS': 'INSERT',
    'CAPS_LOCK': 'CAPSLOCK', 'NUM_LOCK': 'NUMLOCK', 'SCROLL_LOCK': 'SCROLLLOCK',
    'PRINT_SCREEN': 'PRINTSCREEN', 'PRTSC': 'PRINTSCREEN',
    # Punctuation spellings
    'LEFTBRACKET': 'BRACKETLEFT', 'RIGHTBRACKET': 'BRACKETRIGHT', 'DOT': 'PERIOD',
    'GRAVE': 'BACKQUOTE',
    # Keypad spellings
    'KPRETURN': 'NUMPADENTER', 'KPPLUS': 'NUMPADADD', 'KPMINUS': 'NUMPADSUBTRACT',
    'KPMULTIPLY': 'NUMPADMULTIPLY', 'KPDIVIDE': 'NUMPADDIVIDE', 'KPDELETE': 'NUMPADDECIMAL',
    # Mouse buttons
    'MOUSELEFT': 'MOUSE_LEFT', 'MOUSEBUTTONLEFT': 'MOUSE_LEFT', 'MOUSEBUTTON1': 'MOUSE_LEFT',
    'MOUSE1': 'MOUSE_LEFT', 'LMB': 'MOUSE_LEFT',
    'MOUSERIGHT': 'MOUSE_RIGHT', 'MOUSEBUTTONRIGHT': 'MOUSE_RIGHT', 'MOUSEBUTTON2': 'MOUSE_RIGHT',
    'MOUSE2': 'MOUSE_RIGHT', 'RMB': 'MOUSE_RIGHT',
    'MOUSEMIDDLE': 'MOUSE_MIDDLE', 'MOUSEBUTTONMIDDLE': 'MOUSE_MIDDLE', 'MOUSEBUTTON3': 'MOUSE_MIDDLE',
    'MOUSE3': 'MOUSE_MIDDLE', 'MMB': 'MOUSE_MIDDLE',
    'MOUSEBACK': 'MOUSE_BACK', 'MOUSEBUTTONBACK': 'MOUSE_BACK', 'MOUSEBUTTON4': 'MOUSE_BACK',
    'MOUSEX1': 'MOUSE_BACK', 'MOUSE4': 'MOUSE_BACK',
    'MOUSEFORWARD': 'MOUSE_FORWARD', 'MOUSEBUTTONFORWARD': 'MOUSE_FORWARD', 'MOUSEBUTTON5': 'MOUSE_FORWARD',
    'MOUSEX2': 'MOUSE_FORWARD', 'MOUSE5': 'MOUSE_FORWARD',
}

# Single printed characters -> the US-position key that carries them
_CHAR_SYNONYMS: Dict[str, str] = {
    '`': 'BACKQUOTE', '-': 'MINUS', '=': 'EQUAL',
    '[': 'BRACKETLEFT', ']': 'BRACKETRIGHT', ';': 'SEMICOLON',
    "'": 'QUOTE', '\\': 'BACKSLASH', ',': 'COMMA', '.': 'PERIOD', '/': 'SLASH',
}

_LETTER_RE = re.compile(r'^KEY([A-Z])$')
_DIGIT_RE = re.compile(r'^(?:DIGIT|NUM)([0-9])$')
_KEYPAD_RE = re.compile(r'^KP([0-9])$')


def canonicalize(physical_id: Optional[str]) -> str:
    """
    Convert a physical input id to its canonical storage form

    Idempotent: canonicalize(canonicalize(x)) == canonicalize(x).
    Unknown ids come back cleaned (trimmed, upper-cased), never raise.
    """
    if physical_id is None:
        return ""
    raw = str(physical_id).strip()
    if not raw or raw == UNASSIGNED:
        return raw

    if len(raw) == 1:
        return _CHAR_SYNONYMS.get(raw, raw.upper())

    upper = raw.upper().replace(' ', '')
    if upper in _SYNONYMS:
        return _SYNONYMS[upper]

    match = _LETTER_RE.match(upper)
    if match:
        return match.group(1)

    match = _DIGIT_RE.match(upper)
    if match:
        return match.group(1)

    match = _KEYPAD_RE.match(upper)
    if match:
        return f"NUMPAD{match.group(1)}"

    return upper


def _build_canonical_index() -> Dict[str, str]:
    index: Dict[str, str] = {}
    for physical in PHYSICAL_IDS:
        index.setdefault(canonicalize(physical), physical)
    return index


_CANONICAL_TO_PHYSICAL = _build_canonical_index()


def to_physical(canonical_id: str) -> str:
    """Preferred physical id for a canonical id ("Q" -> "KeyQ", "CTRL" -> "ControlLeft")"""
    key = canonicalize(canonical_id)
    return _CANONICAL_TO_PHYSICAL.get(key, key)


def _physical_label(physical: str, layout: KeyboardLayout) -> Optional[str]:
    labels = _LAYOUT_KEYS.get(physical)
    if labels:
        return labels[_LAYOUT_ORDER.index(layout)]
    return _FIXED_LABELS.get(physical)


def label(canonical_id: str, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
    """Display label for a key on the given layout; unknown ids show the raw id"""
    layout = KeyboardLayout.parse(layout)
    key = canonicalize(canonical_id)
    physical = _CANONICAL_TO_PHYSICAL.get(key)
    if physical is None:
        return key
    return _physical_label(physical, layout) or key


def _build_reverse_index() -> Dict[KeyboardLayout, Dict[str, str]]:
    reverse: Dict[KeyboardLayout, Dict[str, str]] = {}
    for layout in _LAYOUT_ORDER:
        table: Dict[str, str] = {}
        for physical in PHYSICAL_IDS:
            text = _physical_label(physical, layout)
            if text:
                table.setdefault(text, physical)
        reverse[layout] = table
    return reverse


_LABEL_TO_PHYSICAL = _build_reverse_index()


def display_to_physical(display: str, layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> str:
    """Resolve a label back to a physical id; unknown labels pass through"""
    layout = KeyboardLayout.parse(layout)
    if display is None:
        return ""
    table = _LABEL_TO_PHYSICAL[layout]
    if display in table:
        return table[display]
    text = display.strip()
    if text in table:
        return table[text]
    if text.upper() in table:
        return table[text.upper()]
    return text


# ==================== MOUSE / DEVICE HELPERS ====================

def mouse_button_from_index(index: int) -> MouseButton:
    """Map the platform numeric button index; unknown indexes fall back to left"""
    return _BUTTON_INDEX.get(index, MouseButton.LEFT)


def mouse_trigger_key(button: MouseButton) -> str:
    """Canonical trigger key for a mouse button"""
    return MOUSE_TRIGGER_KEYS[button]


def button_for_trigger_key(key: str) -> Optional[MouseButton]:
    """Inverse of mouse_trigger_key; None for keyboard keys"""
    canonical = canonicalize(key)
    for button, trigger_key in MOUSE_TRIGGER_KEYS.items():
        if trigger_key == canonical:
            return button
    return None


def trigger_device(key: str) -> DeviceType:
    """Which device a trigger key lives on"""
    if button_for_trigger_key(key) is not None:
        return DeviceType.MOUSE
    return DeviceType.KEYBOARD


def is_modifier(key: str) -> bool:
    return canonicalize(key) in MODIFIER_KEYS


def layout_labels(layout: Union[KeyboardLayout, str] = DEFAULT_LAYOUT) -> List[Tuple[str, str]]:
    """(canonical id, label) pairs for every known key, for key pickers"""
    layout = KeyboardLayout.parse(layout)
    return [(key, label(key, layout)) for key in _CANONICAL_TO_PHYSICAL]
