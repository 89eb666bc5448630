"""
Drives the Telegram handlers with mocked messages and callbacks,
without connecting to Telegram.
"""
import asyncio
import os
from unittest.mock import AsyncMock, Mock

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "1234567890:TEST_TOKEN_FOR_VALIDATION")
os.environ["ROLL_DELAY_SECONDS"] = "0"
os.environ["BROKE_GRACE_SECONDS"] = "0"

import pytest

import bot
from config import get_settings
from games.keystone import BetType
from games.session import KeystoneSession
from ui.keyboards import table_kb


class MockMessage:
    def __init__(self, text="", user_id=1):
        self.from_user = Mock()
        self.from_user.id = user_id
        self.text = text
        self.reply_markup = None
        self.answer = AsyncMock()
        self.edit_text = AsyncMock()


class MockCallbackQuery:
    def __init__(self, data, user_id=1):
        self.data = data
        self.from_user = Mock()
        self.from_user.id = user_id
        self.message = MockMessage(user_id=user_id)
        self.answer = AsyncMock()


def tap(data, user_id):
    cb = MockCallbackQuery(data, user_id)
    asyncio.run(bot.keystone_actions(cb))
    return cb

def last_answer(cb):
    return cb.answer.await_args.args[0] if cb.answer.await_args.args else ""

@pytest.fixture(autouse=True)
def clean_sessions():
    bot.sessions.clear()
    bot.remove_mode.clear()
    yield
    bot.sessions.clear()
    bot.remove_mode.clear()

def seat(user_id, *rolls):
    it = iter(rolls)
    session = KeystoneSession(roll_delay=0, broke_grace=0, dice=lambda: next(it))
    bot.sessions[user_id] = session
    return session


# ---------------- Configuration ----------------

def test_settings_from_environment():
    s = get_settings()
    assert s.bot_token
    assert s.starting_balance == 100
    assert s.stake == 10
    assert s.roll_delay == 0
    assert s.log_level == "INFO"

def test_missing_token_raises(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.delenv("BOT_TOKEN", raising=False)
    with pytest.raises(ValueError):
        get_settings()
    assert get_settings(require_token=False).bot_token == ""

def test_bad_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("STAKE", "lots")
    monkeypatch.setenv("ROLL_DELAY_SECONDS", "soon")
    s = get_settings()
    assert s.stake == 10
    assert s.roll_delay == 1.5


# ---------------- Keyboards ----------------

def test_table_keyboard_layout():
    session = KeystoneSession()
    rows = table_kb(session).inline_keyboard
    assert len(rows) == 12
    assert rows[0][0].callback_data == "ks:bet:ARCH:3"
    assert rows[4][0].callback_data == "ks:bet:INSIDE_NUMBER:3"
    assert rows[-1][1].callback_data == "ks:noop"

def test_arch_buttons_lock_after_first_roll():
    session = KeystoneSession()
    session.has_rolled = True
    session.active_tiles.discard(9)
    rows = table_kb(session).inline_keyboard
    arch = [b for row in rows[:4] for b in row]
    assert all(b.callback_data == "ks:noop" for b in arch)
    numbers = {b.text: b.callback_data for row in rows[4:8] for b in row}
    assert numbers["·"] == "ks:noop"


# ---------------- Handlers ----------------

def test_cmd_start_renders_table():
    msg = MockMessage("/start", user_id=10)
    asyncio.run(bot.cmd_start(msg))
    text = msg.answer.await_args.args[0]
    assert "Keystone" in text
    assert "100 credits" in text
    assert 10 in bot.sessions

def test_place_and_remove_bet():
    cb = tap("ks:bet:ARCH:7", 20)
    assert last_answer(cb) == "Bet added."
    session = bot.sessions[20]
    assert session.get_chip(BetType.ARCH, 7) == 10
    assert session.balance == 90

    tap("ks:mode", 20)
    assert 20 in bot.remove_mode
    cb = tap("ks:bet:ARCH:7", 20)
    assert last_answer(cb) == "Bet removed."
    assert session.get_chip(BetType.ARCH, 7) == 0
    assert session.balance == 100

def test_bad_bet_data():
    cb = tap("ks:bet:NOPE:1", 30)
    assert last_answer(cb) == "Bad bet."
    cb = tap("ks:bet:ARCH:x", 30)
    assert last_answer(cb) == "Bad bet."

def test_roll_needs_arch_bet():
    seat(40, (2, 3, 4))
    tap("ks:bet:INSIDE_PARITY:ODD", 40)
    cb = tap("ks:roll", 40)
    assert last_answer(cb) == "Place at least one arch bet first!"
    assert bot.sessions[40].history == []

def test_roll_settles_and_renders():
    session = seat(50, (2, 3, 4))
    tap("ks:bet:ARCH:9", 50)
    tap("ks:bet:INSIDE_PARITY:ODD", 50)
    cb = tap("ks:roll", 50)
    assert session.history == [(2, 3, 4)]
    assert 9 not in session.active_tiles
    assert session.balance == 120
    text = cb.message.edit_text.await_args.args[0]
    assert "Striking tile 9" in text
    assert "Tile 9 hit! 3x" in text

    cb = tap("ks:bet:ARCH:4", 50)
    assert last_answer(cb) == "Arch bets are locked."

def test_jackpot_shows_restart():
    session = seat(60, (6, 6, 6))
    tap("ks:bet:ARCH:18", 60)
    tap("ks:bet:INSIDE_TRIPLE:TRIPLE", 60)
    cb = tap("ks:roll", 60)
    assert session.terminal
    markup = cb.message.edit_text.await_args.kwargs["reply_markup"]
    assert markup.inline_keyboard[0][0].callback_data == "ks:reset"

    cb = tap("ks:bet:INSIDE_PAIR:PAIR", 60)
    assert last_answer(cb) == "Game over. Restart to play again."
    tap("ks:reset", 60)
    assert not session.terminal
    assert session.balance == 100

def test_bet_values_off_the_table_are_refused():
    session = seat(70, (1, 1, 1))
    for data in ("ks:bet:ARCH:99", "ks:bet:INSIDE_RANGE:foo", "ks:bet:INSIDE_NUMBER:19"):
        cb = tap(data, 70)
        assert last_answer(cb) == "Bad bet."
    assert session.bets == []
    assert session.balance == 100

    tap("ks:bet:ARCH:3", 70)
    tap("ks:bet:INSIDE_PAIR:PAIR", 70)
    tap("ks:roll", 70)
    assert session.terminal
    assert session.won

def test_rules_explain_arch_clearing():
    assert "losing arch bets are cleared" in bot.RULES_TEXT
