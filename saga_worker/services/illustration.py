"""Sequential page illustration.

Pages are rendered strictly one after another with a fixed pause between
requests, each with a seed derived from the wallet so a re-run of the same
saga produces the same images. The first failure aborts the whole job.
"""

from __future__ import annotations

import time
from typing import Callable, Protocol, Sequence

from ..logging import logger
from .scene_extractor import ComicPage

_INT32_MASK = 0xFFFFFFFF


class PageRenderer(Protocol):
    def generate(self, prompt: str, seed: int): ...


def wallet_seed(wallet_id: str) -> int:
    """32-bit string hash of the wallet (``h = h * 31 + ch``), made non-negative."""
    h = 0
    for ch in wallet_id:
        h = ((h << 5) - h + ord(ch)) & _INT32_MASK
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def illustrate_pages(
    pages: Sequence[ComicPage],
    renderer: PageRenderer,
    base_seed: int,
    *,
    delay_seconds: float,
    on_page_done: Callable[[int, int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Render every page and return the image URLs in page order.

    ``on_page_done(done, total)`` is invoked after each successful page.
    """
    total = len(pages)
    urls: list[str] = []
    for index, page in enumerate(pages):
        if index > 0 and delay_seconds > 0:
            sleep(delay_seconds)
        seed = base_seed + index
        result = renderer.generate(page.image_prompt, seed)
        urls.append(result.url)
        logger.info(
            "page_illustrated",
            page_number=page.page_number,
            total_pages=total,
            seed=seed,
            processing_ms=getattr(result, "processing_ms", None),
        )
        if on_page_done is not None:
            on_page_done(index + 1, total)
    return urls
