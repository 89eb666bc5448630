import secrets
from typing import Callable

# (low, high) -> int, both ends inclusive
RandInt = Callable[[int, int], int]

def randint(a: int, b: int) -> int:
    # Inclusive range
    return secrets.randbelow(b - a + 1) + a

def roll_die(sides: int = 6, source: RandInt = randint) -> int:
    return source(1, sides)
