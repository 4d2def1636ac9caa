# run_server.py: packaged launcher for the receipt ledger API.
# Serves main.app with uvicorn on SERVER_HOST:SERVER_PORT from app.core.config
# and appends startup info and crashes to backend_crash.log.
import os, sys, traceback, faulthandler
from pathlib import Path

# write crash logs next to the exe
BASE_DIR = Path(sys.executable).resolve().parent if getattr(sys, "frozen", False) else Path(__file__).resolve().parent
LOG_FILE = BASE_DIR / "backend_crash.log"

# dump fatal crashes too
faulthandler.enable(open(LOG_FILE, "a", encoding="utf-8"))

def log(msg: str):
    with open(LOG_FILE, "a", encoding="utf-8") as f:
        f.write(msg + "\n")

try:
    log(f"\n--- START ---")
    log(f"exe={sys.executable}")
    log(f"cwd={os.getcwd()}")
    log(f"base_dir={BASE_DIR}")

    import uvicorn

    # IMPORTANT: import app after logging is ready
    from main import app
    from app.core.config import SERVER_HOST, SERVER_PORT, LOG_LEVEL

    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT, reload=False, log_level=LOG_LEVEL.lower())

except Exception:
    err = traceback.format_exc()
    log(err)
    print(err)  # if console is visible
    sys.exit(1)
