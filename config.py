import os
from pathlib import Path
from typing import Dict, Tuple

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).parent / ".env")


# ---------------------------------------------------------------------------
# Helper: read from Streamlit secrets if available, else os.getenv
# ---------------------------------------------------------------------------
def _get_secret(key: str, default: str = "") -> str:
    """Try st.secrets first (Streamlit Cloud), then env vars."""
    try:
        import streamlit as st
        if hasattr(st, "secrets") and key in st.secrets:
            return str(st.secrets[key])
    except (ImportError, Exception):
        pass
    return os.getenv(key, default)


# ---------------------------------------------------------------------------
# Environment-driven settings
# ---------------------------------------------------------------------------
API_BASE_URL: str = _get_secret("ASSESS_API_BASE_URL", "http://localhost:8000/api")
API_TOKEN: str = _get_secret("ASSESS_API_TOKEN", "")
REQUEST_TIMEOUT_SECONDS: float = float(_get_secret("ASSESS_REQUEST_TIMEOUT", "30"))
REQUIRE_CAMERA: bool = _get_secret("ASSESS_REQUIRE_CAMERA", "true").lower() == "true"
AUTOSAVE_INTERVAL_SECONDS: int = int(_get_secret("ASSESS_AUTOSAVE_INTERVAL", "30"))
AUTO_SUBMIT_MAX_RETRIES: int = int(_get_secret("ASSESS_AUTO_SUBMIT_RETRIES", "3"))
AUTO_SUBMIT_RETRY_SECONDS: float = float(_get_secret("ASSESS_AUTO_SUBMIT_RETRY_SECONDS", "2"))
LOG_LEVEL: str = _get_secret("ASSESS_LOG_LEVEL", "INFO")
LOG_FILE: str = _get_secret("ASSESS_LOG_FILE", "")

# ---------------------------------------------------------------------------
# Backend endpoints (relative to API_BASE_URL)
# ---------------------------------------------------------------------------
TEST_DEFINITION_PATH = "/student/tests/{test_id}"
SUBMIT_PATH = "/student/tests/{test_id}/submit"
DRAFT_PATH = "/student/tests/{test_id}/draft"
RESULTS_PATH = "/student/submissions/{submission_id}/results"
EXECUTE_CODE_PATH = "/student/execute-code"

# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------
TIMER_WARNING_SECONDS: Tuple[int, ...] = (300, 60)   # 5 minutes, 1 minute
TIMER_CRITICAL_SECONDS = 60

# ---------------------------------------------------------------------------
# Code questions
# ---------------------------------------------------------------------------
DEFAULT_CODE_LANGUAGE = "javascript"

STARTER_TEMPLATES: Dict[str, str] = {
    "javascript": (
        "// Write your solution here\n"
        "function solve() {\n"
        "    // Your code here\n"
        "}\n"
        "\n"
        "console.log(solve());"
    ),
    "python": (
        "# Write your solution here\n"
        "def solve():\n"
        "    # Your code here\n"
        "    pass\n"
        "\n"
        "print(solve())"
    ),
    "java": (
        "import java.util.*;\n"
        "\n"
        "public class Solution {\n"
        "    public static void main(String[] args) {\n"
        "        Scanner scanner = new Scanner(System.in);\n"
        "        // Your code here\n"
        "    }\n"
        "}"
    ),
    "cpp": (
        "#include <iostream>\n"
        "#include <vector>\n"
        "using namespace std;\n"
        "\n"
        "int main() {\n"
        "    // Your code here\n"
        "    return 0;\n"
        "}"
    ),
}

# Mapping from question kind to user-friendly display name
QUESTION_KIND_DISPLAY = {
    "MCQ": "Multiple Choice",
    "DESCRIPTIVE": "Descriptive",
    "CODE": "Coding",
}
