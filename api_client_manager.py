import itertools
import os
import threading
from pathlib import Path
from typing import Iterator, List, Optional

from dotenv import load_dotenv
from google.genai import Client

# Load environment variables from .env file in the project root
load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

_CLIENTS: Optional[List[Client]] = None
_CLIENT_CYCLE: Optional[Iterator[Client]] = None
_LOCK = threading.Lock()


def _configured_api_keys() -> List[str]:
    """GEMINI_API_KEYS (comma-separated) wins over the single GEMINI_API_KEY."""
    keys = [k.strip() for k in os.getenv("GEMINI_API_KEYS", "").split(",") if k.strip()]
    if not keys and os.getenv("GEMINI_API_KEY"):
        keys = [os.getenv("GEMINI_API_KEY").strip()]
    return keys


def get_next_api_client() -> Client:
    """Return the next Gemini client, rotating round-robin over the configured keys."""
    global _CLIENTS, _CLIENT_CYCLE
    with _LOCK:
        if _CLIENTS is None:
            keys = _configured_api_keys()
            if not keys:
                raise RuntimeError(
                    "FATAL: GEMINI_API_KEY not found in environment variables. "
                    "Please ensure it is set in your .env file."
                )
            _CLIENTS = [Client(api_key=key) for key in keys]
            _CLIENT_CYCLE = itertools.cycle(_CLIENTS)
            print(f"INFO: Google GenAI configured with {len(_CLIENTS)} API key(s).")
        return next(_CLIENT_CYCLE)


def reset_api_clients() -> None:
    """Forget the cached clients so the next call re-reads the environment."""
    global _CLIENTS, _CLIENT_CYCLE
    with _LOCK:
        _CLIENTS = None
        _CLIENT_CYCLE = None


def gemini_key_configured() -> bool:
    return bool(_configured_api_keys())
