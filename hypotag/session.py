"""
Interactive selection sessions.

A session shows a list of items, lets the user filter them by typing,
toggle a multi-selection, and ends on a terminating keystroke (a Gesture).

    Tab        toggle the highlighted item (and move down)
    Ctrl-A     select every item currently shown
    Up/Down    move, PgUp/PgDn page, Home/End jump
    Left/Right scroll long lines
    Esc/Ctrl-C abort

The rest of the keys are mapped to gestures by a KeyBindings table.

SelectionState holds all of the logic and is usable without a terminal;
run_session() drives it with curses.
"""

import curses
import logging
import os
import sys
from typing import Optional, Sequence

from rapidfuzz import fuzz

from .errors import SearchError
from .types import Gesture, SearchItem, SelectionResult

logger = logging.getLogger(__name__)

KeyBindings = dict[int, Gesture]

KEY_TAB = 9
KEY_CTRL_A = 1
KEY_CTRL_C = 3
KEY_ESC = 27
_ENTER_KEYS = (10, 13, curses.KEY_ENTER)
_BACKSPACE_KEYS = (curses.KEY_BACKSPACE, 127, 8)

# Browsing annotations: Enter adds a tag
ANNOTATION_BINDINGS: KeyBindings = {
    **{key: Gesture.ADD_TAG for key in _ENTER_KEYS},
    curses.KEY_SLEFT: Gesture.REMOVE_TAG,
    curses.KEY_SRIGHT: Gesture.DELETE,
    curses.KEY_SR: Gesture.EXPORT,  # shift-up
    KEY_ESC: Gesture.ABORT,
    KEY_CTRL_C: Gesture.ABORT,
}

# Picking tags or annotations: Enter just accepts
PICKER_BINDINGS: KeyBindings = {
    **{key: Gesture.ACCEPT for key in _ENTER_KEYS},
    KEY_ESC: Gesture.ABORT,
    KEY_CTRL_C: Gesture.ABORT,
}

NAVIGATION_HELP = (
    "Arrow keys to scroll, Tab to toggle selection, Ctrl-A to select all, Esc to abort"
)
ANNOTATION_HEADER = (
    NAVIGATION_HELP + "\n"
    "Enter to add a tag, Shift-Left to delete a tag, "
    "Shift-Right to delete annotation, Shift-Up to print the set of URIs"
)

PAGE_SIZE = 10
SCROLL_STEP = 4


# -----------------------------------------------------------------------------
# Matching
# -----------------------------------------------------------------------------

def match_positions(line: str, query: str, exact: bool) -> Optional[list[int]]:
    """
    Match a query against a line, case-insensitively.

    The query is split on whitespace and every term must match. In exact
    mode a term matches as a substring; otherwise its characters must appear
    in order (a fuzzy subsequence match).

    Returns:
        Sorted character positions to highlight, or None if it doesn't match
    """
    lowered = line.lower()
    positions: set[int] = set()
    for term in query.lower().split():
        if exact:
            start = lowered.find(term)
            if start < 0:
                return None
            positions.update(range(start, start + len(term)))
        else:
            pos = 0
            for ch in term:
                found = lowered.find(ch, pos)
                if found < 0:
                    return None
                positions.add(found)
                pos = found + 1
    return sorted(positions)


def rank(items: Sequence[SearchItem], query: str, exact: bool) -> list[SearchItem]:
    """Filter items by query and order them best match first.

    Ties keep their input order. An empty query keeps everything as is.
    """
    if not query.strip():
        return list(items)
    needle = query.lower().strip()
    scored = []
    for order, item in enumerate(items):
        if match_positions(item.line, query, exact) is None:
            continue
        score = fuzz.partial_ratio(needle, item.line.lower())
        scored.append((-score, order, item))
    scored.sort(key=lambda entry: (entry[0], entry[1]))
    return [item for _, _, item in scored]


# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

class SelectionState:
    """
    Query, filtered view, cursor and selection of one session.
    """

    def __init__(self, items: Sequence[SearchItem], exact: bool = True):
        self.items = list(items)
        self.exact = exact
        self.query = ""
        self.cursor = 0
        self.offset = 0  # horizontal scroll
        self.selected: set[str] = set()
        self.visible: list[SearchItem] = list(self.items)

    @property
    def current(self) -> Optional[SearchItem]:
        if not self.visible:
            return None
        return self.visible[self.cursor]

    def _clamp(self) -> None:
        self.cursor = max(0, min(self.cursor, len(self.visible) - 1))

    def set_query(self, query: str) -> None:
        self.query = query
        self.visible = rank(self.items, query, self.exact)
        self.cursor = 0

    def type_char(self, ch: str) -> None:
        self.set_query(self.query + ch)

    def backspace(self) -> None:
        if self.query:
            self.set_query(self.query[:-1])

    def move(self, delta: int) -> None:
        self.cursor += delta
        self._clamp()

    def page(self, delta: int) -> None:
        self.move(delta * PAGE_SIZE)

    def home(self) -> None:
        self.cursor = 0

    def end(self) -> None:
        self.cursor = max(0, len(self.visible) - 1)

    def scroll(self, delta: int) -> None:
        self.offset = max(0, self.offset + delta)

    def toggle(self) -> None:
        item = self.current
        if item is None:
            return
        if item.id in self.selected:
            self.selected.remove(item.id)
        else:
            self.selected.add(item.id)

    def select_all(self) -> None:
        """Select every item the current query shows."""
        self.selected.update(item.id for item in self.visible)

    def positions(self, item: SearchItem) -> list[int]:
        return match_positions(item.line, self.query, self.exact) or []

    def result(self, gesture: Gesture) -> SelectionResult:
        """
        Finish the session with a gesture.

        Aborting discards the selection. Otherwise, with nothing toggled,
        the highlighted item (if any) is the selection.
        """
        if gesture is Gesture.ABORT:
            return SelectionResult(frozenset(), gesture, self.query)
        selected = set(self.selected)
        if not selected and self.current is not None:
            selected.add(self.current.id)
        return SelectionResult(frozenset(selected), gesture, self.query)


def handle_key(state: SelectionState, key, bindings: KeyBindings) -> Optional[Gesture]:
    """
    Apply one keystroke.

    Args:
        state: Session state to update
        key: A curses key code or a one-character string
        bindings: Keys that end the session

    Returns:
        The terminating gesture, or None to keep going
    """
    is_char = isinstance(key, str)
    if is_char:
        if len(key) != 1:
            return None
        key = ord(key)
    if key in bindings:
        return bindings[key]
    if key == KEY_TAB:
        state.toggle()
        state.move(1)
    elif key == KEY_CTRL_A:
        state.select_all()
    elif key == curses.KEY_UP:
        state.move(-1)
    elif key == curses.KEY_DOWN:
        state.move(1)
    elif key == curses.KEY_PPAGE:
        state.page(-1)
    elif key == curses.KEY_NPAGE:
        state.page(1)
    elif key == curses.KEY_HOME:
        state.home()
    elif key == curses.KEY_END:
        state.end()
    elif key == curses.KEY_LEFT:
        state.scroll(-SCROLL_STEP)
    elif key == curses.KEY_RIGHT:
        state.scroll(SCROLL_STEP)
    elif key in _BACKSPACE_KEYS:
        state.backspace()
    elif is_char and chr(key).isprintable():
        state.type_char(chr(key))
    return None


# -----------------------------------------------------------------------------
# Terminal
# -----------------------------------------------------------------------------

def _safe_addnstr(scr, y, x, s, max_cols, attr=0):
    """Write safely, avoiding curses ERR on small/resize terminals."""
    H, W = scr.getmaxyx()
    if y < 0 or y >= H or x < 0 or x >= W:
        return
    width = max(0, min(max_cols, W - x))
    if width <= 0:
        return
    try:
        scr.addnstr(y, x, s, width, attr)
    except curses.error:
        pass  # writing the bottom-right cell always "fails"


def _draw_line(scr, y, item, state, W, is_cursor):
    mark = ">" if is_cursor else " "
    mark += "*" if item.id in state.selected else " "
    base = curses.A_REVERSE if is_cursor else curses.A_NORMAL
    _safe_addnstr(scr, y, 0, mark.ljust(W), W, base)
    text = item.line[state.offset:]
    highlight = {p - state.offset for p in state.positions(item)}
    x = len(mark) + 1
    for i, ch in enumerate(text):
        if x + i >= W:
            break
        attr = base | curses.A_BOLD | curses.A_UNDERLINE if i in highlight else base
        _safe_addnstr(scr, y, x + i, ch, 1, attr)


def _draw(scr, state: SelectionState, header: str, preview: bool) -> None:
    scr.erase()
    H, W = scr.getmaxyx()
    row = 0

    if preview:
        pane = max(0, (H * 2) // 5)
        text = state.current.preview if state.current is not None else ""
        lines = []
        for raw in (text or "").splitlines():
            # wrap
            while len(raw) > W:
                lines.append(raw[:W])
                raw = raw[W:]
            lines.append(raw)
        for line in lines[:max(0, pane - 1)]:
            _safe_addnstr(scr, row, 0, line, W)
            row += 1
        row = pane
        if pane:
            _safe_addnstr(scr, row - 1, 0, "─" * W, W, curses.A_DIM)

    _safe_addnstr(scr, row, 0, f"> {state.query}", W, curses.A_BOLD)
    row += 1
    counts = f"  {len(state.visible)}/{len(state.items)} ({len(state.selected)} selected)"
    _safe_addnstr(scr, row, 0, counts, W, curses.A_DIM)
    row += 1
    for line in header.splitlines():
        _safe_addnstr(scr, row, 0, line.ljust(W), W, curses.A_REVERSE)
        row += 1

    rows = max(0, H - row)
    start = 0
    if rows and len(state.visible) > rows:
        start = min(max(state.cursor - rows // 2, 0), len(state.visible) - rows)
    for i in range(start, min(len(state.visible), start + rows)):
        _draw_line(scr, row + i - start, state.visible[i], state, W, i == state.cursor)

    scr.refresh()


def _loop(stdscr, state: SelectionState, header: str, bindings: KeyBindings,
          preview: bool) -> SelectionResult:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    curses.set_escdelay(25)
    stdscr.keypad(True)
    while True:
        _draw(stdscr, state, header, preview)
        try:
            key = stdscr.get_wch()
        except KeyboardInterrupt:
            return state.result(Gesture.ABORT)
        if key == curses.KEY_RESIZE:
            continue
        gesture = handle_key(state, key, bindings)
        if gesture is not None:
            return state.result(gesture)


def run_session(
    items: Sequence[SearchItem],
    *,
    exact: bool = True,
    header: str = NAVIGATION_HELP,
    bindings: Optional[KeyBindings] = None,
    preview: bool = False,
) -> SelectionResult:
    """
    Run a blocking selection session on the terminal.

    Args:
        items: Rows to choose from, in display order
        exact: Substring matching if True, fuzzy matching otherwise
        header: Help text shown above the list
        bindings: Keys that end the session (default: PICKER_BINDINGS)
        preview: Show the highlighted item's preview text in an upper pane

    Raises:
        SearchError: If the terminal can't be used
    """
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        raise SearchError("an interactive terminal is required")
    state = SelectionState(items, exact=exact)
    os.environ.setdefault("ESCDELAY", "25")
    logger.debug("Starting session: %d items, exact=%s", len(state.items), exact)
    try:
        result = curses.wrapper(
            _loop, state, header, bindings or PICKER_BINDINGS, preview
        )
    except curses.error as e:
        raise SearchError(f"terminal error: {e}") from e
    logger.debug("Session ended: %s, %d selected", result.gesture.value, len(result.selected))
    return result
