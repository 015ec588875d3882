import asyncio
from typing import Iterable, Iterator, List, Optional, Sequence, TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


async def rate_limited_sleep(rate_sleep: float) -> None:
    await asyncio.sleep(max(0.0, rate_sleep))


def build_channel_text(title: Optional[str], description: Optional[str]) -> str:
    parts: Iterable[str] = (part.strip() for part in (title, description) if part)
    return "\n".join(part for part in parts if part)
