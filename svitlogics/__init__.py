import os
from pathlib import Path

__version__ = "1.1.0"


def _parse_env_line(line: str):
    s = line.strip()
    if not s or s.startswith("#") or "=" not in s:
        return None
    if s.startswith("export "):
        s = s[len("export "):]
    key, val = s.split("=", 1)
    key = key.strip()
    val = val.strip()
    if len(val) >= 2 and val[0] == val[-1] and val[0] in {'"', "'"}:
        val = val[1:-1]
    return key, val


def _load_dotenv_if_needed() -> None:
    # Tests configure the environment themselves
    if os.getenv("PYTEST_CURRENT_TEST"):
        return
    env_path = Path(os.getenv("SVITLOGICS_ENV_FILE", ".env"))
    if not env_path.is_file():
        return
    try:
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for line in lines:
        parsed = _parse_env_line(line)
        if parsed is None:
            continue
        key, val = parsed
        # Real environment wins over the file
        if key and key not in os.environ:
            os.environ[key] = val


_load_dotenv_if_needed()
