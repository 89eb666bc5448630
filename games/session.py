"""
Keystone session controller.

Owns the mutable state of one game (stones, balance, open bets, roll history)
and sequences the rules in games.keystone in response to player actions.
Phases run BETTING -> ROLLING -> BETTING or TERMINAL; only reset() leaves
TERMINAL.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from games import keystone
from games.keystone import Bet, BetType, BetValue, Roll, Settlement

logger = logging.getLogger(__name__)

DiceSource = Callable[[], Roll]

WELCOME = "Place your bets, friend!"
NEW_GAME = "New game, good luck!"
ROLLING = "The bones are rolling..."
NEED_ARCH = "Place at least one arch bet first!"
NEED_INSIDE = "Place at least one inside bet first!"
JACKPOT = "JACKPOT! The bones favor you!"
BROKE = "You are flat broke!"


class Phase(str, Enum):
    BETTING = "betting"
    ROLLING = "rolling"
    TERMINAL = "terminal"


@dataclass
class RollOutcome:
    roll: Roll
    total: int
    struck_tile: Optional[int]
    jackpot: bool
    settlement: Settlement
    game_over_reason: str = ""


class KeystoneSession:
    def __init__(
        self,
        starting_balance: int = 100,
        stake: int = 10,
        roll_delay: float = 1.5,
        broke_grace: float = 1.5,
        dice: Optional[DiceSource] = None,
    ):
        self.starting_balance = starting_balance
        self.stake = stake
        self.roll_delay = roll_delay
        self.broke_grace = broke_grace
        self.dice = dice or keystone.roll_dice
        self._grace_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._init_state(WELCOME)

    def _init_state(self, message: str) -> None:
        # A roll started before a reset must not settle into the new game
        self._generation += 1
        self.active_tiles: Set[int] = set(keystone.INITIAL_TILES)
        self.balance = self.starting_balance
        self.bets: List[Bet] = []
        self.has_rolled = False
        self.phase = Phase.BETTING
        self.won = False
        self.last_roll: Optional[Roll] = None
        self.last_result: Optional[Settlement] = None
        self.history: List[Roll] = []
        self.message = message

    # ---------------- Queries ----------------
    @property
    def terminal(self) -> bool:
        return self.phase is Phase.TERMINAL

    @property
    def rolling(self) -> bool:
        return self.phase is Phase.ROLLING

    @property
    def arch_locked(self) -> bool:
        return self.has_rolled

    @property
    def has_arch_bets(self) -> bool:
        return any(b.type is BetType.ARCH for b in self.bets)

    @property
    def has_inside_bets(self) -> bool:
        return any(b.type.is_inside for b in self.bets)

    @property
    def can_roll(self) -> bool:
        if self.phase is not Phase.BETTING or not self.has_inside_bets:
            return False
        return self.has_rolled or self.has_arch_bets

    @property
    def total_staked(self) -> int:
        return sum(b.amount for b in self.bets)

    def find_bet(self, bet_type: BetType, value: BetValue) -> Optional[Bet]:
        for b in self.bets:
            if b.type is bet_type and b.value == value:
                return b
        return None

    def get_chip(self, bet_type: BetType, value: BetValue) -> int:
        bet = self.find_bet(bet_type, value)
        return bet.amount if bet else 0

    def slot_outcomes(self) -> Dict[Tuple[BetType, BetValue], str]:
        if not self.last_result:
            return {}
        return {
            r.bet.key: "won" if r.won else "lost"
            for r in self.last_result.breakdown
        }

    # ---------------- Actions ----------------
    def _bets_frozen(self, bet_type: BetType) -> bool:
        if self.phase is not Phase.BETTING:
            return True
        return bet_type is BetType.ARCH and self.arch_locked

    def place_bet(self, bet_type: BetType, value: BetValue) -> bool:
        if self._bets_frozen(bet_type):
            logger.debug("place_bet %s:%s refused in phase %s", bet_type.value, value, self.phase.value)
            return False
        if not keystone.is_valid_value(bet_type, value):
            logger.debug("place_bet %s:%s refused, no such slot", bet_type.value, value)
            return False
        if self.balance < self.stake:
            logger.debug("place_bet %s:%s refused, balance %s", bet_type.value, value, self.balance)
            return False
        self.balance -= self.stake
        bet = self.find_bet(bet_type, value)
        if bet:
            bet.amount += self.stake
        else:
            self.bets.append(Bet(id=uuid.uuid4().hex[:8], type=bet_type, value=value, amount=self.stake))
        self._watch_liquidity()
        return True

    def remove_bet(self, bet_type: BetType, value: BetValue) -> bool:
        if self._bets_frozen(bet_type):
            logger.debug("remove_bet %s:%s refused in phase %s", bet_type.value, value, self.phase.value)
            return False
        bet = self.find_bet(bet_type, value)
        if not bet:
            return False
        self.bets.remove(bet)
        self.balance += bet.amount
        self._watch_liquidity()
        return True

    async def roll(self) -> Optional[RollOutcome]:
        if self.phase is not Phase.BETTING:
            return None
        if not self.has_rolled and not self.has_arch_bets:
            self.message = NEED_ARCH
            return None
        if not self.has_inside_bets:
            self.message = NEED_INSIDE
            return None

        generation = self._generation
        self.phase = Phase.ROLLING
        self.message = ROLLING
        await asyncio.sleep(self.roll_delay)

        if generation != self._generation:
            logger.info("Roll dropped, session was reset while the dice were in the air")
            return None
        try:
            return self._settle_roll()
        finally:
            if self.phase is Phase.ROLLING:
                self.phase = Phase.BETTING

    def _settle_roll(self) -> RollOutcome:
        roll = self.dice()
        total = keystone.dice_sum(roll)
        self.last_roll = roll
        self.history.append(roll)
        self.has_rolled = True

        settlement = keystone.settle_inside_bets(self.bets, roll)
        if keystone.is_jackpot(roll, self.active_tiles):
            outcome = self._resolve_jackpot(roll, total, settlement)
        else:
            outcome = self._resolve_strike(roll, total, settlement)

        self.last_result = outcome.settlement
        self.balance += outcome.settlement.total
        self.bets = []
        logger.info(
            "Rolled %s (sum %s), struck %s, paid %s, balance %s",
            roll, total, outcome.struck_tile, outcome.settlement.total, self.balance,
        )

        if outcome.jackpot:
            self._finish(JACKPOT)
            return outcome

        verdict = keystone.check_game_over(self.active_tiles)
        if verdict.over:
            outcome.game_over_reason = verdict.reason
            self._finish(f"Game Over: {verdict.reason} Final balance: {self.balance} credits")
        else:
            self.phase = Phase.BETTING
            self._watch_liquidity()
        return outcome

    def _resolve_jackpot(self, roll: Roll, total: int, inside: Settlement) -> RollOutcome:
        self.won = True
        return RollOutcome(
            roll=roll,
            total=total,
            struck_tile=None,
            jackpot=True,
            settlement=inside.merge(keystone.settle_jackpot(self.bets)),
        )

    def _resolve_strike(self, roll: Roll, total: int, inside: Settlement) -> RollOutcome:
        tile = keystone.select_struck_tile(total, self.active_tiles)
        settlement = inside.merge(keystone.settle_arch_bets(self.bets, tile))
        msg = f"Rolled {total}. "
        if tile is not None:
            self.active_tiles.discard(tile)
            msg += f"Striking tile {tile}."
        else:
            msg += "A swing and a miss."
        if settlement.total > 0:
            msg += f" You've won {settlement.total} credits!"
        self.message = msg
        return RollOutcome(roll=roll, total=total, struck_tile=tile, jackpot=False, settlement=settlement)

    def reset(self) -> None:
        self._cancel_grace()
        self._init_state(NEW_GAME)
        logger.info("Session reset")

    # ---------------- Termination ----------------
    def _finish(self, message: str) -> None:
        self._cancel_grace()
        self.phase = Phase.TERMINAL
        self.message = message
        logger.info("Game over: %s", message)

    def is_broke(self) -> bool:
        return self.phase is Phase.BETTING and self.balance == 0 and not self.has_inside_bets

    def _watch_liquidity(self) -> None:
        if not self.is_broke():
            self._cancel_grace()
            return
        self.message = BROKE
        if self._grace_task and not self._grace_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._finish(BROKE)
            return
        self._grace_task = loop.create_task(self._broke_after_grace())

    async def _broke_after_grace(self) -> None:
        await asyncio.sleep(self.broke_grace)
        if self.is_broke():
            self._finish(BROKE)

    def _cancel_grace(self) -> None:
        task = self._grace_task
        self._grace_task = None
        if task and not task.done() and task is not _current_task():
            task.cancel()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
