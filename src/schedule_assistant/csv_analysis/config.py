"""Configuration constants for CSV schedule-import analysis."""

import os

# Storage Configuration
DEFAULT_DATABASE_PATH = os.environ.get(
    "SCHEDULE_ASSISTANT_DB", os.path.expanduser("~/.schedule-assistant/schedule.db")
)
DEFAULT_WAL_MODE = True

# Database Schema Version
SCHEMA_VERSION = 1

# LLM Configuration
DEFAULT_OLLAMA_MODEL = "llama3.2:3b"
DEFAULT_OLLAMA_BASE_URL = os.environ.get("OLLAMA_HOST", "http://localhost:11434")
DEFAULT_OLLAMA_TIMEOUT = 10.0  # seconds
DEFAULT_OLLAMA_MAX_RETRIES = 3
DEFAULT_OLLAMA_TEMPERATURE = 0.1

# Analysis
DEFAULT_ANALYSIS_TYPE = "both"
DEFAULT_LANGUAGE = "vietnamese"
ESTIMATED_SECONDS_PER_ENTRY = {"parsing": 0.1, "ai": 3.0, "both": 3.0}
# Confidence assigned by rule-based parsing when no LLM score is available
RULE_BASED_CONFIDENCE = 0.6
RULE_BASED_CONFIDENCE_FULL_ROW = 0.8

# Parser defaults
DEFAULT_EVENT_DURATION_MINUTES = 90
DEFAULT_FREE_TEXT_DURATION_MINUTES = 60
DEFAULT_PRIORITY = 3
MIN_PRIORITY = 1
MAX_PRIORITY = 5
# Standard Vietnamese class-period timetable: period number -> (start "HH:MM")
CLASS_PERIOD_START_TIMES = {
    1: "07:00",
    2: "07:50",
    3: "08:50",
    4: "09:40",
    5: "10:30",
    6: "13:00",
    7: "13:50",
    8: "14:50",
    9: "15:40",
    10: "16:30",
    11: "17:40",
    12: "18:30",
    13: "19:20",
    14: "20:10",
}
CLASS_PERIOD_MINUTES = 50

# Conflict detection
MAX_DAILY_SCHEDULED_HOURS = 8
BACK_TO_BACK_GAP_MINUTES = 10

# Auth
TOKEN_BYTES = 32
PASSWORD_BCRYPT_ROUNDS = int(os.environ.get("SCHEDULE_ASSISTANT_BCRYPT_ROUNDS", "12"))

# REST Server Configuration
DEFAULT_REST_HOST = "127.0.0.1"
DEFAULT_REST_PORT = 8000
API_PREFIX = "/api/v1"

# MCP Server Configuration
DEFAULT_MCP_HOST = "localhost"
DEFAULT_MCP_PORT = 3000
DEFAULT_MCP_SERVER_NAME = "schedule-assistant"

# LLM Prompt Template
# Placeholders: {title}, {start}, {end}, {location}, {raw_text}, {language}
DEFAULT_ANALYSIS_PROMPT = """You review one entry of an imported Vietnamese schedule.

ENTRY: {raw_text}
PARSED: title="{title}" start={start} end={end} location="{location}"
Write the suggestions in {language}.

Respond ONLY in TOML format:
confidence = 0.0-1.0
category = "study/exam/meeting/work/personal/other"
priority = 1-5
suggestions = ["short suggestion", ...]"""
