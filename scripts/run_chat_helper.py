#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[chat-helper] cdp={os.environ.get('CHAT_HELPER_CDP_HOST', '127.0.0.1')}:"
    f"{os.environ.get('CHAT_HELPER_CDP_PORT', '9222')} | "
    f"tab={os.environ.get('CHAT_HELPER_TAB_MATCH', '*')} | "
    f"adapter={os.environ.get('CHAT_HELPER_ADAPTER', 'auto')}",
    file=sys.stderr,
)

from chat_helpers.core.main import main  # noqa: E402

if __name__ == "__main__":
    sys.exit(main())
