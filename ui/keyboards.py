from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder

from games import keystone
from games.keystone import BetType
from games.session import KeystoneSession

OUTCOME_MARK = {"won": "✅", "lost": "❌"}

INSIDE_SLOTS = [
    (BetType.INSIDE_RANGE, "4-9", "4-9"),
    (BetType.INSIDE_RANGE, "10-11", "10-11"),
    (BetType.INSIDE_RANGE, "12-17", "12-17"),
    (BetType.INSIDE_COLOR, "RED", "🔴 Red"),
    (BetType.INSIDE_COLOR, "BLACK", "⚫ Black"),
    (BetType.INSIDE_PARITY, "EVEN", "○ Even"),
    (BetType.INSIDE_PARITY, "ODD", "● Odd"),
    (BetType.INSIDE_PAIR, "PAIR", "Pair 3x"),
    (BetType.INSIDE_TRIPLE, "TRIPLE", "Triple 30x"),
]

def _slot_text(session: KeystoneSession, bet_type: BetType, value, label: str) -> str:
    chip = session.get_chip(bet_type, value)
    mark = OUTCOME_MARK.get(session.slot_outcomes().get((bet_type, value)), "")
    text = f"{mark}{label}"
    if chip:
        text += f" [{chip}]"
    return text

def _bet_callback(bet_type: BetType, value) -> str:
    return f"ks:bet:{bet_type.value}:{value}"

def table_kb(session: KeystoneSession, remove_mode: bool = False) -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    tiles = sorted(keystone.INITIAL_TILES)

    # Arch stones, locked after the first roll
    for n in tiles:
        standing = n in session.active_tiles
        if session.arch_locked or not standing:
            text = _slot_text(session, BetType.ARCH, n, f"🔒{n}" if standing else "·")
            kb.button(text=text, callback_data="ks:noop")
        else:
            kb.button(
                text=_slot_text(session, BetType.ARCH, n, f"🏛{n}"),
                callback_data=_bet_callback(BetType.ARCH, n),
            )

    # Inside number bets, only on stones still standing
    for n in tiles:
        if n in session.active_tiles:
            kb.button(
                text=_slot_text(session, BetType.INSIDE_NUMBER, n, f"{n}·{keystone.PAYOUTS[n]}x"),
                callback_data=_bet_callback(BetType.INSIDE_NUMBER, n),
            )
        else:
            kb.button(text="·", callback_data="ks:noop")

    for bet_type, value, label in INSIDE_SLOTS:
        kb.button(text=_slot_text(session, bet_type, value, label), callback_data=_bet_callback(bet_type, value))

    kb.button(text="➖ Removing" if remove_mode else "➕ Placing", callback_data="ks:mode")
    if session.terminal:
        kb.button(text="🔄 Restart", callback_data="ks:reset")
    else:
        kb.button(
            text="🎲 ROLL" if session.can_roll else "➕ Add bets",
            callback_data="ks:roll" if session.can_roll else "ks:noop",
        )
    kb.button(text="📜 Rules", callback_data="ks:rules")
    kb.adjust(4, 4, 4, 4, 4, 4, 4, 4, 3, 4, 2, 3)
    return kb.as_markup()

def rules_kb() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="Got it — let's play!", callback_data="nav:table")
    return kb.as_markup()

def game_over_kb() -> InlineKeyboardMarkup:
    kb = InlineKeyboardBuilder()
    kb.button(text="🔄 Restart", callback_data="ks:reset")
    kb.button(text="📋 Table", callback_data="nav:table")
    kb.adjust(2)
    return kb.as_markup()
