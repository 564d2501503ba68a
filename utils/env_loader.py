import io
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ENV = Path(__file__).resolve().parent.parent / ".env"


def load_env(path: Optional[Path] = None) -> bool:
    """Load settings for the focus engine from a dotenv file.

    ``FOCUS_ENV_FILE`` points at an alternative file. A UTF-8 BOM and CRLF
    endings are normalised in memory; the file on disk is left as is.
    Variables already present in the environment win.

    Returns True if a file was found and read.
    """
    env_path = path or Path(os.getenv("FOCUS_ENV_FILE") or PROJECT_ENV)
    if not env_path.is_file():
        return False
    text = env_path.read_text(encoding="utf-8-sig").replace("\r\n", "\n")
    load_dotenv(stream=io.StringIO(text), override=False)
    return True
