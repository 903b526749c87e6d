import os
import sys
import tempfile

# Module-level stores read these at import time, so they must be set before app.* is imported.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="wasil-tests-")
os.environ["WASIL_DB_PATH"] = os.path.join(_TEST_DATA_DIR, "wasil.sqlite3")
os.environ["MEDIA_ROOT"] = os.path.join(_TEST_DATA_DIR, "media")
os.environ["MEDIA_BACKEND"] = "local"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("OPENAI_API_KEY_FILE", None)
os.environ.pop("FIREBASE_CREDENTIALS_PATH", None)
os.environ.pop("AUTH_REQUIRED", None)
os.environ.pop("FIREBASE_STORAGE_BUCKET", None)

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))
