# playwright_smoke.py
from __future__ import annotations

import asyncio
import logging
import sys
from typing import List, Optional

from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://www.baidu.com"
DEFAULT_SCREENSHOT = "screenshot.png"


async def run(url: str = DEFAULT_URL, screenshot: str = DEFAULT_SCREENSHOT) -> str:
    """Open url in Chromium, print its title and save a screenshot."""
    async with async_playwright() as pw:
        browser = await pw.chromium.launch()
        print("Browser launched")
        try:
            page = await browser.new_page()
            print("Page created")

            print(f"Navigating to {url}...")
            await page.goto(url)

            title = await page.title()
            print(f"Page title: {title}")

            await page.screenshot(path=screenshot)
            print(f"Screenshot saved to {screenshot}")
        finally:
            await browser.close()
            print("Browser closed")
    return title


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv if argv is None else argv
    url = argv[1] if len(argv) > 1 else DEFAULT_URL
    screenshot = argv[2] if len(argv) > 2 else DEFAULT_SCREENSHOT

    logging.basicConfig(level=logging.INFO)
    print("Starting Playwright smoke test...")
    try:
        asyncio.run(run(url, screenshot))
    except Exception as e:
        logger.error("smoke test failed: %s: %s", type(e).__name__, e)
        return 1
    print("Smoke test finished")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
