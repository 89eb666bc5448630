import asyncio
import logging
from typing import Dict, Set

from aiogram import Bot, Dispatcher, Router, F
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramBadRequest
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message

from config import get_settings
from games import keystone
from games.keystone import BetType
from games.session import KeystoneSession
from ui.keyboards import game_over_kb, rules_kb, table_kb

settings = get_settings()
router = Router()
logger = logging.getLogger("keystone_bot")

# One game per player, kept in memory only
sessions: Dict[int, KeystoneSession] = {}
remove_mode: Set[int] = set()

DIE_FACES = {1: "⚀", 2: "⚁", 3: "⚂", 4: "⚃", 5: "⚄", 6: "⚅"}

RULES_TEXT = (
    "🏛 <b>How to Play Keystone</b>\n\n"
    "<b>Setup</b>\n"
    f"Start with {settings.starting_balance} credits. Place at least one <b>arch bet</b> "
    "and one <b>inside bet</b> before rolling. Every tap moves one "
    f"{settings.stake}-credit chip.\n\n"
    "<b>Arch Bets</b>\n"
    "Bet on which stone will be struck. Place them before your first roll, they are locked after. "
    "Payouts vary by stone (2x–30x). Hit 3 or 18 with all stones intact for a <b>jackpot</b>.\n\n"
    "<b>Inside Bets</b>\n"
    "Bet on the dice each roll: exact sum, ranges (4–9, 10–11, 12–17), red/black, even/odd, "
    "pairs or triples. They resolve every roll.\n\n"
    "<b>Rolling</b>\n"
    "Three dice are rolled. The sum strikes a stone: the matching one, or the nearest one "
    "toward the rail if it is gone. Winning arch bets pay; losing arch bets are cleared. "
    "Inside bets pay or lose each roll.\n\n"
    "<b>How the Game Ends</b>\n"
    "• <b>Base stone removed</b>: stone 3 or 18 is struck\n"
    "• <b>Keystones removed</b>: both 10 and 11 are struck\n"
    "• <b>All tiles removed</b>: every stone has been struck\n"
    "• <b>Flat broke</b>: balance hits 0 with no inside bets to roll\n\n"
    "Toggle ➕/➖ to switch between placing and removing chips."
)

def get_session(user_id: int) -> KeystoneSession:
    session = sessions.get(user_id)
    if session is None:
        session = KeystoneSession(
            starting_balance=settings.starting_balance,
            stake=settings.stake,
            roll_delay=settings.roll_delay,
            broke_grace=settings.broke_grace,
        )
        sessions[user_id] = session
    return session

# ---------- safe_edit helper (prevents 'message is not modified') ----------
async def safe_edit(message, text: str, **kwargs):
    """
    Edit only if content or markup differ. Swallows the specific
    'message is not modified' TelegramBadRequest.
    """
    try:
        same_text = getattr(message, "text", None) == text
        same_markup = False
        new_markup = kwargs.get("reply_markup")
        old_markup = getattr(message, "reply_markup", None)
        if same_text:
            if not new_markup and not old_markup:
                same_markup = True
            elif new_markup and old_markup:
                same_markup = new_markup == old_markup
        if same_text and same_markup:
            return
        await message.edit_text(text, **kwargs)
    except TelegramBadRequest as e:
        if "message is not modified" not in str(e):
            raise

# =========================================================
# Rendering
# =========================================================

def format_roll(roll) -> str:
    faces = " ".join(DIE_FACES[d] for d in roll)
    return f"{faces} = {keystone.dice_sum(roll)}"

def format_arch(session: KeystoneSession) -> str:
    return " ".join(
        str(n) if n in session.active_tiles else "·"
        for n in sorted(keystone.INITIAL_TILES)
    )

def build_table_text(session: KeystoneSession) -> str:
    lines = [
        "🏛 <b>Keystone</b>",
        f"💰 <b>Balance:</b> {session.balance} credits",
        f"🧱 <b>Arch:</b> {format_arch(session)}",
    ]
    if session.last_roll:
        lines.append(f"🎲 <b>Last roll:</b> {format_roll(session.last_roll)}")
    lines.append("🔒 Arch bets locked" if session.arch_locked else "⚓ Arch bets open until the first roll")
    lines.append("")
    lines.append(f"<i>{session.message}</i>")
    lines.append("")
    lines.append(keystone.summarize_bets(session.bets))
    if session.last_result and session.last_result.breakdown:
        lines.append("")
        lines.append("<b>Last roll:</b>")
        for r in session.last_result.breakdown:
            mark = "✅" if r.won else "❌"
            lines.append(f"{mark} {r.label} (payout {r.payout})")
        lines.append(f"Total win: {session.last_result.total}")
    return "\n".join(lines)

async def _render_table(cb: CallbackQuery, session: KeystoneSession):
    markup = game_over_kb() if session.terminal else table_kb(session, cb.from_user.id in remove_mode)
    await safe_edit(cb.message, build_table_text(session), reply_markup=markup, parse_mode=ParseMode.HTML)

# =========================================================
# Commands
# =========================================================

@router.message(Command("start"))
async def cmd_start(msg: Message):
    session = get_session(msg.from_user.id)
    await msg.answer(
        build_table_text(session),
        reply_markup=table_kb(session, msg.from_user.id in remove_mode),
        parse_mode=ParseMode.HTML,
    )

@router.message(Command("rules"))
async def cmd_rules(msg: Message):
    await msg.answer(RULES_TEXT, reply_markup=rules_kb(), parse_mode=ParseMode.HTML)

@router.message(Command("balance"))
async def cmd_balance(msg: Message):
    session = get_session(msg.from_user.id)
    await msg.answer(f"💰 Balance: {session.balance} credits\n\n{keystone.summarize_bets(session.bets)}")

@router.message(Command("reset"))
async def cmd_reset(msg: Message):
    session = get_session(msg.from_user.id)
    session.reset()
    remove_mode.discard(msg.from_user.id)
    await msg.answer(
        build_table_text(session),
        reply_markup=table_kb(session),
        parse_mode=ParseMode.HTML,
    )

@router.callback_query(F.data == "nav:table")
async def nav_table(cb: CallbackQuery):
    await _render_table(cb, get_session(cb.from_user.id))
    await cb.answer()

# =========================================================
# Table actions
# =========================================================

async def _toggle_bet(cb: CallbackQuery, session: KeystoneSession, parts: list[str]):
    try:
        bet_type = BetType(parts[2])
        value = keystone.parse_value(bet_type, parts[3])
    except (IndexError, ValueError):
        return await cb.answer("Bad bet.", show_alert=True)

    if session.terminal:
        return await cb.answer("Game over. Restart to play again.", show_alert=True)
    if session.rolling:
        return await cb.answer("Dice are rolling.")
    if bet_type is BetType.ARCH and session.arch_locked:
        return await cb.answer("Arch bets are locked.", show_alert=True)

    if cb.from_user.id in remove_mode:
        if not session.remove_bet(bet_type, value):
            return await cb.answer("No bet there.")
        await _render_table(cb, session)
        return await cb.answer("Bet removed.")

    if not session.place_bet(bet_type, value):
        return await cb.answer("Low balance.", show_alert=True)
    await _render_table(cb, session)
    await cb.answer("Bet added.")
    if session.balance == 0 and not session.has_inside_bets:
        await _await_broke(cb, session)

async def _await_broke(cb: CallbackQuery, session: KeystoneSession):
    # Give the grace timer a chance to fire, then show the final table
    await asyncio.sleep(session.broke_grace)
    await asyncio.sleep(0)
    if session.terminal:
        await _render_table(cb, session)

async def _roll(cb: CallbackQuery, session: KeystoneSession):
    if not session.can_roll:
        await session.roll()
        return await cb.answer(session.message, show_alert=True)
    rolling = asyncio.create_task(session.roll())
    # Let the roll take the ROLLING phase before anything else runs
    await asyncio.sleep(0)
    await safe_edit(cb.message, f"🎲 <i>{session.message}</i>", parse_mode=ParseMode.HTML)
    await cb.answer()
    outcome = await rolling
    await _render_table(cb, session)
    if outcome and session.is_broke():
        await _await_broke(cb, session)

@router.callback_query(F.data.func(lambda d: d.startswith("ks:")))
async def keystone_actions(cb: CallbackQuery):
    parts = cb.data.split(":")
    action = parts[1]
    session = get_session(cb.from_user.id)

    if action == "noop":
        return await cb.answer()

    if action == "bet":
        return await _toggle_bet(cb, session, parts)

    if action == "mode":
        if cb.from_user.id in remove_mode:
            remove_mode.discard(cb.from_user.id)
        else:
            remove_mode.add(cb.from_user.id)
        await _render_table(cb, session)
        return await cb.answer("Removing chips." if cb.from_user.id in remove_mode else "Placing chips.")

    if action == "roll":
        return await _roll(cb, session)

    if action == "reset":
        session.reset()
        remove_mode.discard(cb.from_user.id)
        await _render_table(cb, session)
        return await cb.answer("New game.")

    if action == "rules":
        await safe_edit(cb.message, RULES_TEXT, reply_markup=rules_kb(), parse_mode=ParseMode.HTML)
        return await cb.answer()

    await cb.answer()

# =========================================================
# Entrypoint
# =========================================================

async def main():
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()
    dp.include_router(router)
    logger.info("Starting Keystone bot")
    await dp.start_polling(bot)

if __name__ == "__main__":
    asyncio.run(main())
