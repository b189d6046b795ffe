import os
import sys
from pathlib import Path


# Keep tests deterministic and local-only.
os.environ["JOBS_SKIP_DOTENV"] = "1"
os.environ["JOBS_STORE_BACKEND"] = "db"
os.environ["JOBS_ENGINE_BACKEND"] = "mock"
os.environ["JOBS_SYNC_PROCESSING"] = "1"
os.environ["JOBS_LOG_LEVEL"] = "WARNING"
os.environ["DIFY_API_KEY"] = ""
os.environ["DIFY_API_BASE_URL"] = ""

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

TEST_DB_PATH = BACKEND_ROOT / "test_workflow_jobs.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
