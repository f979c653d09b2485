"""
Browser management module for lodestar.

Example:
    from lodestar.browser import connect, launch

    # Launch a local browser
    async with await launch(headless=True) as browser:
        page = await browser.new_page("https://example.com")

    # Attach to a running one (nothing is killed on close)
    browser = await connect("http://127.0.0.1:9222")
    page = await browser.new_page()
    await browser.close()
"""

from lodestar.browser.browser import Browser, connect, launch

__all__ = ["Browser", "connect", "launch"]
