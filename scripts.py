"""
Post-install script for setting up browser dependencies.

Downloads the Playwright browser engines the crawler escalates between:
Chromium for listing pages and WebKit for programme pages.
"""
import subprocess
import sys

ENGINES = ["chromium", "webkit"]


def postinstall():
    """
    Run playwright install for every engine the crawler uses.

    Run manually after `pip install -e .`: python scripts.py
    """
    print("Checking for browser installation...")

    try:
        from playwright.async_api import async_playwright  # noqa: F401
    except ImportError:
        print(
            "Playwright is not installed. Skipping browser setup.\n"
            "To install, run: pip install -e ."
        )
        return

    command = [sys.executable, "-m", "playwright", "install", *ENGINES]
    print(f"Running 'playwright install {' '.join(ENGINES)}'...")
    try:
        result = subprocess.run(command, check=True, capture_output=True, text=True)
        if result.stdout:
            print(result.stdout)
        print("Browsers installed successfully.")
    except subprocess.CalledProcessError as e:
        print(f"Error installing Playwright browsers: {e}", file=sys.stderr)
        if e.stderr:
            print(e.stderr, file=sys.stderr)
        print(
            "Please run the following command manually:\n"
            f"  python -m playwright install {' '.join(ENGINES)}",
            file=sys.stderr
        )


if __name__ == "__main__":
    postinstall()
