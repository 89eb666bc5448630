"""
Keystone resolution rules: dice, struck stones, payouts and game-over checks.
Everything here is a pure function of its arguments except roll_dice().
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from services import rng

Roll = Tuple[int, int, int]
BetValue = Union[int, str]

LOW_RAIL = 3
HIGH_RAIL = 18
KEYSTONES = (10, 11)

INITIAL_TILES = frozenset(range(LOW_RAIL, HIGH_RAIL + 1))

# Sum -> multiplier, shared by arch bets and inside number bets
PAYOUTS = {
    3: 30, 4: 15, 5: 10, 6: 7, 7: 5, 8: 4, 9: 3,
    10: 2, 11: 2,
    12: 3, 13: 4, 14: 5, 15: 7, 16: 10, 17: 15, 18: 30,
}

RED_SUMS = frozenset({4, 6, 8, 10, 12, 14, 16, 18})
BLACK_SUMS = frozenset({3, 5, 7, 9, 11, 13, 15, 17})

# label -> (inclusive bounds, multiplier)
RANGES = {
    "4-9": ((4, 9), 2),
    "10-11": ((10, 11), 3),
    "12-17": ((12, 17), 2),
}

TRIPLE_MULTIPLIER = 30
PAIR_MULTIPLIER = 3
EVEN_MONEY = 1


class BetType(str, Enum):
    ARCH = "ARCH"
    INSIDE_NUMBER = "INSIDE_NUMBER"
    INSIDE_RANGE = "INSIDE_RANGE"
    INSIDE_COLOR = "INSIDE_COLOR"
    INSIDE_PARITY = "INSIDE_PARITY"
    INSIDE_TRIPLE = "INSIDE_TRIPLE"
    INSIDE_PAIR = "INSIDE_PAIR"

    @property
    def is_inside(self) -> bool:
        return self is not BetType.ARCH

    @property
    def numeric(self) -> bool:
        return self in (BetType.ARCH, BetType.INSIDE_NUMBER)


@dataclass
class Bet:
    id: str
    type: BetType
    value: BetValue
    amount: int

    @property
    def key(self) -> Tuple[BetType, BetValue]:
        return (self.type, self.value)


@dataclass
class BetResult:
    bet: Bet
    won: bool
    payout: int
    label: str


@dataclass
class Settlement:
    total: int = 0
    breakdown: List[BetResult] = field(default_factory=list)

    def merge(self, other: "Settlement") -> "Settlement":
        return Settlement(self.total + other.total, self.breakdown + other.breakdown)


@dataclass(frozen=True)
class GameOver:
    over: bool
    reason: str = ""


# =========================================================
# Dice
# =========================================================

def roll_dice(randint: rng.RandInt = rng.randint) -> Roll:
    return (
        rng.roll_die(source=randint),
        rng.roll_die(source=randint),
        rng.roll_die(source=randint),
    )

def dice_sum(roll: Roll) -> int:
    return roll[0] + roll[1] + roll[2]

def is_triple(roll: Roll) -> bool:
    return roll[0] == roll[1] == roll[2]

def is_pair(roll: Roll) -> bool:
    a, b, c = roll
    return (a == b or b == c or a == c) and not is_triple(roll)


# =========================================================
# Arch
# =========================================================

def select_struck_tile(total: int, active_tiles: Iterable[int]) -> Optional[int]:
    """
    Pick the stone a roll knocks out.

    The exact sum falls if it is still standing. Otherwise the search runs
    toward the nearer rail only: down to 3 for sums up to 10, up to 18 above
    that. Returns None when nothing is left on that side.
    """
    active = set(active_tiles)
    if total in active:
        return total
    if total <= 10:
        candidates = range(total - 1, LOW_RAIL - 1, -1)
    else:
        candidates = range(total + 1, HIGH_RAIL + 1)
    for tile in candidates:
        if tile in active:
            return tile
    return None

def check_game_over(active_tiles: Iterable[int]) -> GameOver:
    active = set(active_tiles)
    if LOW_RAIL not in active or HIGH_RAIL not in active:
        return GameOver(True, "Base stone removed!")
    if not any(k in active for k in KEYSTONES):
        return GameOver(True, "Keystones removed!")
    # Unreachable while the rails and keystones are checked first
    if not active:
        return GameOver(True, "All tiles removed!")
    return GameOver(False)

def is_jackpot(roll: Roll, active_tiles: Iterable[int]) -> bool:
    return set(active_tiles) == INITIAL_TILES and dice_sum(roll) in (LOW_RAIL, HIGH_RAIL)


# =========================================================
# Inside bets
# =========================================================

# Each rule returns (multiplier on a win or 0, label)
InsideRule = Callable[[BetValue, Roll], Tuple[int, str]]

def _number_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    total = dice_sum(roll)
    if value == total:
        return PAYOUTS[total], f"{value} hit! {PAYOUTS[total]}x"
    return 0, f"{value} missed"

def _range_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    total = dice_sum(roll)
    (low, high), multiplier = RANGES[value]
    if low <= total <= high:
        return multiplier, f"{value} hit! {multiplier}x"
    return 0, f"{value} missed"

def _color_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    sums = RED_SUMS if value == "RED" else BLACK_SUMS
    if dice_sum(roll) in sums:
        return EVEN_MONEY, f"{value} hit! 1:1"
    return 0, f"{value} missed"

def _parity_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    parity = "EVEN" if dice_sum(roll) % 2 == 0 else "ODD"
    if parity == value:
        return EVEN_MONEY, f"{value} hit! 1:1"
    return 0, f"{value} missed"

def _triple_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    if is_triple(roll):
        return TRIPLE_MULTIPLIER, f"TRIPLE hit! {TRIPLE_MULTIPLIER}x"
    return 0, "TRIPLE missed"

def _pair_rule(value: BetValue, roll: Roll) -> Tuple[int, str]:
    if is_pair(roll):
        return PAIR_MULTIPLIER, f"PAIR hit! {PAIR_MULTIPLIER}x"
    return 0, "PAIR missed"

INSIDE_RULES: Dict[BetType, InsideRule] = {
    BetType.INSIDE_NUMBER: _number_rule,
    BetType.INSIDE_RANGE: _range_rule,
    BetType.INSIDE_COLOR: _color_rule,
    BetType.INSIDE_PARITY: _parity_rule,
    BetType.INSIDE_TRIPLE: _triple_rule,
    BetType.INSIDE_PAIR: _pair_rule,
}

def settle_inside_bets(bets: Iterable[Bet], roll: Roll) -> Settlement:
    """Settle every single-turn bet against one roll. Arch bets are skipped."""
    breakdown = []
    for bet in bets:
        if not bet.type.is_inside:
            continue
        multiplier, label = INSIDE_RULES[bet.type](bet.value, roll)
        payout = bet.amount * multiplier
        breakdown.append(BetResult(bet=bet, won=payout > 0, payout=payout, label=label))
    return Settlement(sum(r.payout for r in breakdown), breakdown)


# =========================================================
# Arch bets
# =========================================================

def settle_arch_bets(bets: Iterable[Bet], struck_tile: Optional[int]) -> Settlement:
    breakdown = []
    for bet in bets:
        if bet.type is not BetType.ARCH:
            continue
        won = struck_tile is not None and bet.value == struck_tile
        if won:
            payout = bet.amount * PAYOUTS[bet.value]
            label = f"Tile {bet.value} hit! {PAYOUTS[bet.value]}x"
        else:
            payout = 0
            label = f"Tile {bet.value} missed"
        breakdown.append(BetResult(bet=bet, won=won, payout=payout, label=label))
    return Settlement(sum(r.payout for r in breakdown), breakdown)

def settle_jackpot(bets: Iterable[Bet]) -> Settlement:
    # Every arch bet pays at its own tile, whatever the rolled sum
    breakdown = [
        BetResult(
            bet=bet,
            won=True,
            payout=bet.amount * PAYOUTS[bet.value],
            label=f"JACKPOT! Tile {bet.value} pays {PAYOUTS[bet.value]}x",
        )
        for bet in bets
        if bet.type is BetType.ARCH
    ]
    return Settlement(sum(r.payout for r in breakdown), breakdown)


# =========================================================
# Display helpers
# =========================================================

BET_LABELS = {
    BetType.ARCH: "Arch",
    BetType.INSIDE_NUMBER: "Number",
    BetType.INSIDE_RANGE: "Range",
    BetType.INSIDE_COLOR: "Color",
    BetType.INSIDE_PARITY: "Parity",
    BetType.INSIDE_TRIPLE: "Triple",
    BetType.INSIDE_PAIR: "Pair",
}

# Labels accepted for each non-numeric bet type
VALUE_LABELS = {
    BetType.INSIDE_RANGE: frozenset(RANGES),
    BetType.INSIDE_COLOR: frozenset({"RED", "BLACK"}),
    BetType.INSIDE_PARITY: frozenset({"EVEN", "ODD"}),
    BetType.INSIDE_TRIPLE: frozenset({"TRIPLE"}),
    BetType.INSIDE_PAIR: frozenset({"PAIR"}),
}

def is_valid_value(bet_type: BetType, value: BetValue) -> bool:
    if bet_type.numeric:
        return value in INITIAL_TILES
    return value in VALUE_LABELS[bet_type]

def parse_value(bet_type: BetType, raw: str) -> BetValue:
    """Turn callback text into a bet value. Raises ValueError for anything off the table."""
    value = int(raw) if bet_type.numeric else raw
    if not is_valid_value(bet_type, value):
        raise ValueError(f"no {bet_type.value} slot for {raw!r}")
    return value

def pretty_bet_line(b: Bet) -> str:
    t = b.type
    v = b.value
    amt = b.amount
    if t is BetType.ARCH:
        return f"🏛 {amt} on stone {v} ({PAYOUTS[v]}x)"
    if t is BetType.INSIDE_NUMBER:
        return f"🎯 {amt} on sum {v} ({PAYOUTS[v]}x)"
    if t is BetType.INSIDE_COLOR:
        emoji = "🔴" if v == "RED" else "⚫"
        return f"{emoji} {amt} on {str(v).title()}"
    if t is BetType.INSIDE_PARITY:
        emoji = "○" if v == "EVEN" else "●"
        return f"{emoji} {amt} on {str(v).title()}"
    if t is BetType.INSIDE_RANGE:
        return f"📦 {amt} on {v}"
    # Pair and triple
    return f"🎲 {amt} on {BET_LABELS[t]}"

def summarize_bets(bets: List[Bet]) -> str:
    if not bets:
        return "No bets placed."
    lines = [pretty_bet_line(b) for b in bets]
    total = sum(b.amount for b in bets)
    return "Your Bets:\n" + "\n".join(lines) + f"\n— Total locked: {total}"
